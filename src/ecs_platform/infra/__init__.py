"""CloudFormation deployment for ecs-platform stacks."""

from .stack_manager import MANAGED_BY_TAG_KEY, MANAGED_BY_TAG_VALUE, StackManager

__all__ = ["MANAGED_BY_TAG_KEY", "MANAGED_BY_TAG_VALUE", "StackManager"]

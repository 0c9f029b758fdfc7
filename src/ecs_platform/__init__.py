"""
ecs-platform: Service topology composer for Fargate deployments.

Composes the CloudFormation resource graph for the Pulumi API and console
services (load balancers, target groups, routing rules, identities, task
definitions, autoscaling), rewrites ARNs for the region's AWS partition,
and runs the database migration task once per deployment.

Example:
    from ecs_platform import compose_platform, load_config

    platform = compose_platform(load_config("prod.yaml"))
    print(platform.to_yaml())
"""

from importlib.metadata import PackageNotFoundError, version

from .config import DeploymentConfig, load_config
from .deployment import DeploymentResult, PlatformTemplate, compose_platform, deploy_platform
from .exceptions import (
    CompositionAborted,
    CompositionError,
    ConfigurationError,
    ConflictDetected,
    EcsPlatformError,
    InfrastructureError,
    InvalidIdentifierFormat,
    LaunchFailed,
    MigrationError,
    MigrationFailed,
    PartitionError,
    PartitionMismatch,
    StackDeploymentError,
    TimedOut,
    UpstreamQueryError,
    ValidationError,
)
from .infra.stack_manager import StackManager
from .migration import MigrationTaskOrchestrator, RetryPolicy
from .models import DeploymentContext, TaskExecution, TaskPlacement, TaskState
from .partition import DeploymentPartition, resolve_arn, resolve_endpoint
from .policies import PolicyDocumentComposer
from .topology import ServiceTopology, ServiceTopologyComposer

try:
    __version__ = version("ecs-platform")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Entry points
    "compose_platform",
    "deploy_platform",
    "load_config",
    # Main classes
    "DeploymentConfig",
    "DeploymentContext",
    "DeploymentPartition",
    "DeploymentResult",
    "MigrationTaskOrchestrator",
    "PlatformTemplate",
    "PolicyDocumentComposer",
    "RetryPolicy",
    "ServiceTopology",
    "ServiceTopologyComposer",
    "StackManager",
    "TaskExecution",
    "TaskPlacement",
    "TaskState",
    # Functions
    "resolve_arn",
    "resolve_endpoint",
    # Exceptions - Base
    "EcsPlatformError",
    # Exceptions - Categories
    "PartitionError",
    "CompositionError",
    "MigrationError",
    "InfrastructureError",
    # Exceptions - Input
    "ValidationError",
    "ConfigurationError",
    # Exceptions - Partition
    "InvalidIdentifierFormat",
    "PartitionMismatch",
    # Exceptions - Composition
    "CompositionAborted",
    # Exceptions - Migration
    "ConflictDetected",
    "LaunchFailed",
    "TimedOut",
    "MigrationFailed",
    "UpstreamQueryError",
    # Exceptions - Infrastructure
    "StackDeploymentError",
]

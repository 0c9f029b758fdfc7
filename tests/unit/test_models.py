"""Tests for the shared records."""

import pytest

from ecs_platform.exceptions import PartitionMismatch
from ecs_platform.models import (
    ContainerDefinition,
    DeploymentContext,
    Endpoint,
    EnvironmentVariable,
    HealthCheck,
    RoutingRule,
    SecurityGroupRule,
    TargetPool,
    TaskExecution,
    TaskPlacement,
    TaskSizing,
    TaskState,
    resolve_size,
)

DEFAULTS = TaskSizing(512, 1024, 512, 384, 3)


class TestTaskSizing:
    """Tests for the sizing defaulting chain."""

    @pytest.mark.parametrize(("value", "expected"), [(None, 7), (0, 7), (-1, 7), (5, 5)])
    def test_resolve_size(self, value: int | None, expected: int) -> None:
        assert resolve_size(value, 7) == expected

    def test_all_defaults(self) -> None:
        assert TaskSizing.resolve(DEFAULTS) == DEFAULTS

    def test_container_cpu_follows_task_cpu(self) -> None:
        """Container CPU falls back to the resolved task CPU, not its own default."""
        sizing = TaskSizing.resolve(DEFAULTS, task_cpu=2048)
        assert sizing.task_cpu == 2048
        assert sizing.container_cpu == 2048
        assert sizing.container_memory_reservation == 384

    def test_explicit_values(self) -> None:
        sizing = TaskSizing.resolve(
            DEFAULTS,
            task_cpu=1024,
            task_memory=2048,
            container_cpu=256,
            container_memory_reservation=512,
            desired_count=1,
        )
        assert sizing == TaskSizing(1024, 2048, 256, 512, 1)


class TestDeploymentContext:
    """Tests for DeploymentContext."""

    def test_secrets_prefix(self, context: DeploymentContext) -> None:
        assert context.secrets_prefix == "selfhosted/prod"

    def test_resolve_rewrites_for_gov(self) -> None:
        context = DeploymentContext("us-gov-west-1", "123456789012", "p", "s")
        assert context.resolve("arn:aws:s3:::bucket") == "arn:aws-us-gov:s3:::bucket"

    def test_resolve_rejects_foreign_partition(self, context: DeploymentContext) -> None:
        with pytest.raises(PartitionMismatch):
            context.resolve("arn:aws-us-gov:kms:us-gov-west-1:123456789012:key/abc")


class TestRoutingRule:
    """Tests for RoutingRule.conditions."""

    def test_private_rule_has_no_conditions(self) -> None:
        pool = TargetPool("Pool", "TCP", 8080, HealthCheck(), private=True)
        rule = RoutingRule("Listener", Endpoint.PRIVATE_TCP, pool, 1)
        assert rule.conditions() == []
        assert rule.endpoint.is_private

    def test_host_only(self) -> None:
        pool = TargetPool("Pool", "HTTP", 8080, HealthCheck())
        rule = RoutingRule("Rule", Endpoint.PUBLIC_HTTPS, pool, 1, host_headers=("a.example",))
        assert rule.conditions() == [
            {"Field": "host-header", "HostHeaderConfig": {"Values": ["a.example"]}}
        ]
        assert pool.arn == {"Ref": "Pool"}


class TestSecurityGroupRule:
    """Tests for SecurityGroupRule."""

    def test_egress_to_security_group(self) -> None:
        rule = SecurityGroupRule(3306, 3306, security_group="sg-db")
        assert rule.to_egress() == {
            "IpProtocol": "tcp",
            "FromPort": 3306,
            "ToPort": 3306,
            "DestinationSecurityGroupId": "sg-db",
        }

    def test_ingress_from_prefix_list(self) -> None:
        rule = SecurityGroupRule(443, 443, prefix_list="pl-1", description="s3")
        assert rule.to_ingress() == {
            "IpProtocol": "tcp",
            "FromPort": 443,
            "ToPort": 443,
            "Description": "s3",
            "SourcePrefixListId": "pl-1",
        }

    def test_all_traffic(self) -> None:
        rule = SecurityGroupRule.all_traffic()
        assert rule.to_egress()["IpProtocol"] == "-1"
        assert rule.to_egress()["CidrIp"] == "0.0.0.0/0"


class TestContainerDefinition:
    """Tests for ContainerDefinition.to_dict."""

    def test_optional_blocks_omitted(self) -> None:
        assert ContainerDefinition(name="c", image="i").to_dict() == {
            "Name": "c",
            "Image": "i",
            "Cpu": 0,
            "MemoryReservation": 0,
            "Essential": True,
        }

    def test_environment(self) -> None:
        container = ContainerDefinition(
            name="c", image="i", environment=(EnvironmentVariable("A", "1"),)
        )
        assert container.to_dict()["Environment"] == [{"Name": "A", "Value": "1"}]


class TestTaskExecution:
    """Tests for the migration state machine record."""

    def make(self) -> TaskExecution:
        return TaskExecution(
            family="pulumi-migration-task",
            cluster="pulumi",
            task_definition="migration:1",
            placement=TaskPlacement("subnet-1", "sg-1"),
        )

    def test_transitions_recorded(self) -> None:
        execution = self.make()
        for state in (TaskState.SUBMITTED, TaskState.RUNNING, TaskState.STOPPED):
            execution.transition(state)
        assert execution.transitions == [
            TaskState.SUBMITTED,
            TaskState.RUNNING,
            TaskState.STOPPED,
        ]

    @pytest.mark.parametrize(
        "terminal",
        [
            TaskState.STOPPED,
            TaskState.TIMED_OUT,
            TaskState.CONFLICT_DETECTED,
            TaskState.LAUNCH_FAILED,
            TaskState.SKIPPED,
        ],
    )
    def test_terminal_states_are_final(self, terminal: TaskState) -> None:
        execution = self.make()
        execution.transition(terminal)
        with pytest.raises(RuntimeError):
            execution.transition(TaskState.RUNNING)

    def test_succeeded(self) -> None:
        execution = self.make()
        execution.transition(TaskState.STOPPED)
        assert not execution.succeeded
        execution.exit_code = 0
        assert execution.succeeded

    def test_placement_network_configuration(self) -> None:
        placement = TaskPlacement("subnet-1", "sg-1", assign_public_ip=True)
        config = placement.to_network_configuration()["awsvpcConfiguration"]
        assert config["assignPublicIp"] == "ENABLED"

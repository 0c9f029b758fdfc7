"""Typed records shared by the composers and the migration orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .partition import DeploymentPartition, resolve_arn, verify_partition

# A string value or a CloudFormation intrinsic (e.g. {"Ref": "Bucket"})
Value = Any


@dataclass(frozen=True)
class DeploymentContext:
    """
    Explicit deployment-wide values passed to every composer call.

    Attributes:
        region: AWS region (e.g. 'us-east-1')
        account_id: AWS account the platform is deployed into
        project: Project name, first half of the secrets prefix
        stack: Stack name, second half of the secrets prefix
    """

    region: str
    account_id: str
    project: str
    stack: str

    @property
    def partition(self) -> DeploymentPartition:
        return DeploymentPartition.for_region(self.region)

    @property
    def secrets_prefix(self) -> str:
        return f"{self.project}/{self.stack}"

    def resolve(self, identifier: str) -> str:
        """Resolve an ARN for this region and check its partition."""
        return verify_partition(self.region, resolve_arn(self.region, identifier))


@dataclass(frozen=True)
class DatabaseContext:
    """Already-provisioned database the services connect to."""

    endpoint: str
    port: int = 3306
    security_group_id: str = ""
    name: str = "pulumi"
    username: str = ""
    password: str = ""

    @property
    def address(self) -> str:
        return f"{self.endpoint}:{self.port}"


@dataclass(frozen=True)
class NetworkContext:
    """
    Network placement shared by every service.

    ``endpoint_security_group`` and ``storage_prefix_list`` are only needed
    when restricted egress is enabled.
    """

    vpc_id: str
    vpc_cidr: str
    public_subnet_ids: tuple[str, ...]
    private_subnet_ids: tuple[str, ...]
    database: DatabaseContext
    endpoint_security_group: Value = None
    storage_prefix_list: Value = None


# ---------------------------------------------------------------------------
# Load balancing
# ---------------------------------------------------------------------------


class Endpoint(Enum):
    """Listener a routing rule is attached to."""

    PUBLIC_HTTPS = "public-https"
    PUBLIC_HTTP = "public-http"
    PRIVATE_TCP = "private-tcp"
    PRIVATE_TLS = "private-tls"

    @property
    def is_private(self) -> bool:
        return self in (Endpoint.PRIVATE_TCP, Endpoint.PRIVATE_TLS)


@dataclass(frozen=True)
class HealthCheck:
    """Target pool health check. Defaults follow the load balancer's service probes."""

    path: str = "/"
    interval: int = 10
    timeout: int = 5
    healthy_threshold: int = 5
    unhealthy_threshold: int = 2
    matcher: str = "200-299"


@dataclass(frozen=True)
class TargetPool:
    """A health-checked group of service tasks behind a load balancer."""

    logical_id: str
    protocol: str
    port: int
    health_check: HealthCheck
    private: bool = False
    target_type: str = "ip"

    @property
    def arn(self) -> dict[str, Any]:
        return {"Ref": self.logical_id}


@dataclass(frozen=True)
class RoutingRule:
    """
    Mapping from a listener condition to a target pool.

    Public rules match on host header and optional path pattern.
    Private rules are dedicated listeners on the internal load balancer
    that forward everything to their pool, so they carry no conditions.
    """

    logical_id: str
    endpoint: Endpoint
    target_pool: TargetPool
    priority: int
    host_headers: tuple[Value, ...] = ()
    path_patterns: tuple[str, ...] = ()

    def conditions(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = []
        if self.host_headers:
            result.append(
                {"Field": "host-header", "HostHeaderConfig": {"Values": list(self.host_headers)}}
            )
        if self.path_patterns:
            result.append(
                {
                    "Field": "path-pattern",
                    "PathPatternConfig": {"Values": list(self.path_patterns)},
                }
            )
        return result


@dataclass(frozen=True)
class SecurityGroupRule:
    """One ingress or egress rule of a security group."""

    from_port: int
    to_port: int
    protocol: str = "tcp"
    cidr: str | None = None
    security_group: Value = None
    prefix_list: Value = None
    description: str | None = None

    @classmethod
    def all_traffic(cls, cidr: str = "0.0.0.0/0") -> SecurityGroupRule:
        return cls(
            from_port=0,
            to_port=0,
            protocol="-1",
            cidr=cidr,
            description="Allows egress to all IP addresses",
        )

    def _base(self) -> dict[str, Any]:
        rule: dict[str, Any] = {
            "IpProtocol": self.protocol,
            "FromPort": self.from_port,
            "ToPort": self.to_port,
        }
        if self.description:
            rule["Description"] = self.description
        return rule

    def to_ingress(self) -> dict[str, Any]:
        rule = self._base()
        if self.cidr:
            rule["CidrIp"] = self.cidr
        if self.security_group is not None:
            rule["SourceSecurityGroupId"] = self.security_group
        if self.prefix_list is not None:
            rule["SourcePrefixListId"] = self.prefix_list
        return rule

    def to_egress(self) -> dict[str, Any]:
        rule = self._base()
        if self.cidr:
            rule["CidrIp"] = self.cidr
        if self.security_group is not None:
            rule["DestinationSecurityGroupId"] = self.security_group
        if self.prefix_list is not None:
            rule["DestinationPrefixListId"] = self.prefix_list
        return rule


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnvironmentVariable:
    name: str
    value: Value

    def to_dict(self) -> dict[str, Any]:
        return {"Name": self.name, "Value": self.value}


@dataclass(frozen=True)
class SecretReference:
    """Name plus an opaque reference to a stored secret. Never the raw value."""

    name: str
    value_from: Value

    def to_dict(self) -> dict[str, Any]:
        return {"Name": self.name, "ValueFrom": self.value_from}


@dataclass(frozen=True)
class Ulimit:
    name: str
    soft: int
    hard: int

    def to_dict(self) -> dict[str, Any]:
        return {"Name": self.name, "SoftLimit": self.soft, "HardLimit": self.hard}


@dataclass(frozen=True)
class ContainerDefinition:
    """A container within a task definition."""

    name: str
    image: str
    cpu: int = 0
    memory_reservation: int = 0
    log_configuration: dict[str, Any] | None = None
    port: int | None = None
    environment: tuple[EnvironmentVariable, ...] = ()
    secrets: tuple[SecretReference, ...] = ()
    ulimits: tuple[Ulimit, ...] = ()
    essential: bool = True

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "Name": self.name,
            "Image": self.image,
            "Cpu": self.cpu,
            "MemoryReservation": self.memory_reservation,
            "Essential": self.essential,
        }
        if self.log_configuration is not None:
            result["LogConfiguration"] = self.log_configuration
        if self.port is not None:
            result["PortMappings"] = [{"ContainerPort": self.port, "Protocol": "tcp"}]
        if self.environment:
            result["Environment"] = [e.to_dict() for e in self.environment]
        if self.secrets:
            result["Secrets"] = [s.to_dict() for s in self.secrets]
        if self.ulimits:
            result["Ulimits"] = [u.to_dict() for u in self.ulimits]
        return result


def resolve_size(value: int | None, default: int) -> int:
    """Explicit value if it is greater than zero, else the documented default."""
    if value is not None and value > 0:
        return value
    return default


@dataclass(frozen=True)
class TaskSizing:
    """Resolved CPU and memory reservations for a service's tasks."""

    task_cpu: int
    task_memory: int
    container_cpu: int
    container_memory_reservation: int
    desired_count: int

    @classmethod
    def resolve(
        cls,
        defaults: TaskSizing,
        task_cpu: int | None = None,
        task_memory: int | None = None,
        container_cpu: int | None = None,
        container_memory_reservation: int | None = None,
        desired_count: int | None = None,
    ) -> TaskSizing:
        """
        Apply the defaulting chain to each value.

        Container CPU falls back to the resolved task CPU rather than to
        the default container CPU.
        """
        resolved_task_cpu = resolve_size(task_cpu, defaults.task_cpu)
        return cls(
            task_cpu=resolved_task_cpu,
            task_memory=resolve_size(task_memory, defaults.task_memory),
            container_cpu=resolve_size(container_cpu, resolved_task_cpu),
            container_memory_reservation=resolve_size(
                container_memory_reservation, defaults.container_memory_reservation
            ),
            desired_count=resolve_size(desired_count, defaults.desired_count),
        )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScalingBounds:
    min_capacity: int = 1
    max_capacity: int = 6


@dataclass(frozen=True)
class ScalingPolicy:
    """Target-tracking policy on one predefined ECS service metric."""

    name: str
    metric: str
    target_value: float = 65.0
    scale_in_cooldown: int = 60
    scale_out_cooldown: int = 60


DEFAULT_SCALING_POLICIES = (
    ScalingPolicy(name="cpu", metric="ECSServiceAverageCPUUtilization"),
    ScalingPolicy(name="memory", metric="ECSServiceAverageMemoryUtilization"),
)


@dataclass(frozen=True)
class ServiceSpec:
    """
    Everything the topology composer needs to know about one service.

    ``task_policies`` are attached to the task identity only. The execution
    identity always gets the managed baseline plus secret-store access.
    ``private_listener_ports`` are the (plaintext, TLS) ports this service
    claims on the internal load balancer.
    """

    name: str
    container: ContainerDefinition
    port: int
    health_check: HealthCheck
    sizing: TaskSizing
    host_headers: tuple[Value, ...]
    log_driver: Any = None
    path_patterns: tuple[str, ...] = ()
    priority: int = 1
    task_policies: tuple[Any, ...] = ()
    endpoint_egress: bool = True
    database_ingress: bool = False
    extra_egress: tuple[SecurityGroupRule, ...] = ()
    private_listener_ports: tuple[int, int] = (80, 443)
    grace_period: int = 60
    scaling_bounds: ScalingBounds = field(default_factory=ScalingBounds)
    scaling_policies: tuple[ScalingPolicy, ...] = DEFAULT_SCALING_POLICIES

    @property
    def family(self) -> str:
        return f"{self.container.name}-task"


# ---------------------------------------------------------------------------
# Migration task
# ---------------------------------------------------------------------------


class TaskState(Enum):
    """States of a single migration task invocation."""

    IDLE = "IDLE"
    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    TIMED_OUT = "TIMED_OUT"
    CONFLICT_DETECTED = "CONFLICT_DETECTED"
    LAUNCH_FAILED = "LAUNCH_FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskState.IDLE, TaskState.SUBMITTED, TaskState.RUNNING)


@dataclass(frozen=True)
class TaskPlacement:
    """Network placement for a one-shot Fargate task."""

    subnet_id: str
    security_group_id: str
    assign_public_ip: bool = False

    def to_network_configuration(self) -> dict[str, Any]:
        return {
            "awsvpcConfiguration": {
                "assignPublicIp": "ENABLED" if self.assign_public_ip else "DISABLED",
                "securityGroups": [self.security_group_id],
                "subnets": [self.subnet_id],
            }
        }


@dataclass
class TaskExecution:
    """
    One invocation of the migration task. Never reused across runs.

    ``transitions`` records every state entered, in order.
    """

    family: str
    cluster: str
    task_definition: str
    placement: TaskPlacement
    state: TaskState = TaskState.IDLE
    task_arn: str | None = None
    group: str | None = None
    exit_code: int | None = None
    stopped_reason: str | None = None
    transitions: list[TaskState] = field(default_factory=list)

    def transition(self, state: TaskState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Task execution already finished in state {self.state.value}")
        self.state = state
        self.transitions.append(state)

    @property
    def succeeded(self) -> bool:
        return self.state is TaskState.STOPPED and self.exit_code == 0

"""Database migration task.

Two halves:

* ``migration_task_resources`` declares the one-shot Fargate task
  definition, its log group, security group and identities.
* ``MigrationTaskOrchestrator`` runs that task once against a live ECS
  cluster: mutual-exclusion check, launch, two bounded polling phases and
  exit-code verification.

Each terminal outcome of a run raises its own ``MigrationError`` subclass.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import boto3
from botocore.exceptions import ClientError

from .config import DeploymentConfig
from .exceptions import (
    ConflictDetected,
    LaunchFailed,
    MigrationFailed,
    TimedOut,
    UpstreamQueryError,
)
from .models import (
    ContainerDefinition,
    EnvironmentVariable,
    NetworkContext,
    TaskExecution,
    TaskPlacement,
    TaskState,
    Value,
)
from .naming import logical_id
from .policies import PolicyDocumentComposer, assume_role_policy
from .secrets import SecretsProvider
from .services import ecr_image
from .template import Resource, Template

logger = logging.getLogger(__name__)

MIGRATION_NAME = "pulumi-migration"
MIGRATION_FAMILY = "pulumi-migration-task"
MIGRATION_CONTAINER_NAME = "pulumi-migration"
MIGRATION_LOG_GROUP = "pulumi-migration-logs"
MIGRATION_LOG_RETENTION_DAYS = 1
MIGRATION_TASK_CPU = 256
MIGRATION_TASK_MEMORY = 512

PHASE_AWAITING_RUNNING = "awaiting-running"
PHASE_AWAITING_STOPPED = "awaiting-stopped"

STATUS_RUNNING = "RUNNING"
STATUS_STOPPED = "STOPPED"

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Task definition
# ---------------------------------------------------------------------------


@dataclass
class MigrationTask:
    """Handles into the migration task's resources."""

    task_definition: Resource
    security_group: Resource
    log_group: Resource
    template: Template

    @property
    def task_definition_arn(self) -> Value:
        return self.task_definition.ref

    @property
    def security_group_id(self) -> Value:
        return self.security_group.get_att("GroupId")

    def outputs(self) -> dict[str, Any]:
        return {
            "migrationTaskDefinitionArn": self.task_definition_arn,
            "migrationSecurityGroupId": self.security_group_id,
        }


def migration_task_resources(
    config: DeploymentConfig,
    network: NetworkContext,
    secrets: SecretsProvider,
) -> MigrationTask:
    """
    Declare the migration task definition and its supporting resources.

    The task gets unrestricted egress plus an ingress rule on the database
    security group. Database root credentials reach the container as
    secret references only.
    """
    template = Template(description="Database migration task")
    db = network.database
    context = config.context()
    policies = PolicyDocumentComposer(context)

    log_group = template.add(
        Resource(
            logical_id(MIGRATION_NAME, "log-group"),
            "AWS::Logs::LogGroup",
            {
                "LogGroupName": MIGRATION_LOG_GROUP,
                "RetentionInDays": MIGRATION_LOG_RETENTION_DAYS,
            },
        )
    )

    security_group = template.add(
        Resource(
            logical_id(MIGRATION_NAME, "security-group"),
            "AWS::EC2::SecurityGroup",
            {
                "GroupDescription": "Database migration task security group",
                "VpcId": network.vpc_id,
                "SecurityGroupEgress": [
                    {"IpProtocol": "-1", "FromPort": 0, "ToPort": 0, "CidrIp": "0.0.0.0/0"}
                ],
            },
        )
    )
    template.add(
        Resource(
            logical_id(MIGRATION_NAME, "db-ingress"),
            "AWS::EC2::SecurityGroupIngress",
            {
                "GroupId": db.security_group_id,
                "IpProtocol": "tcp",
                "FromPort": db.port,
                "ToPort": db.port,
                "SourceSecurityGroupId": security_group.get_att("GroupId"),
                "Description": "Allow the migration task to reach the database",
            },
        )
    )

    references = secrets.secrets(
        MIGRATION_NAME,
        [("MYSQL_ROOT_USERNAME", db.username), ("MYSQL_ROOT_PASSWORD", db.password)],
    )

    execution_properties: dict[str, Any] = {
        "AssumeRolePolicyDocument": assume_role_policy().to_dict(),
        "ManagedPolicyArns": [policies.managed_baseline()],
    }
    if references:
        document = policies.secret_store(secrets.prefix, config.kms_key_arn)
        execution_properties["Policies"] = [
            {
                "PolicyName": f"{MIGRATION_NAME}-{document.name}",
                "PolicyDocument": document.to_dict(),
            }
        ]
    execution_role = template.add(
        Resource(
            logical_id(MIGRATION_NAME, "execution-role"), "AWS::IAM::Role", execution_properties
        )
    )

    container = ContainerDefinition(
        name=MIGRATION_CONTAINER_NAME,
        image=ecr_image(config, "pulumi/migrations"),
        cpu=MIGRATION_TASK_CPU,
        memory_reservation=MIGRATION_TASK_MEMORY,
        environment=(
            EnvironmentVariable("SKIP_CREATE_DB_USER", "true"),
            EnvironmentVariable("PULUMI_DATABASE_ENDPOINT", db.address),
            EnvironmentVariable("PULUMI_DATABASE_PING_ENDPOINT", db.endpoint),
        ),
        secrets=tuple(references),
        log_configuration={
            "LogDriver": "awslogs",
            "Options": {
                "awslogs-region": config.region,
                "awslogs-group": log_group.ref,
                "awslogs-stream-prefix": MIGRATION_NAME,
            },
        },
    )

    task_definition = template.add(
        Resource(
            logical_id(MIGRATION_NAME, "task-definition"),
            "AWS::ECS::TaskDefinition",
            {
                "Family": MIGRATION_FAMILY,
                "NetworkMode": "awsvpc",
                "RequiresCompatibilities": ["FARGATE"],
                "Cpu": str(MIGRATION_TASK_CPU),
                "Memory": str(MIGRATION_TASK_MEMORY),
                "ExecutionRoleArn": execution_role.get_att("Arn"),
                "ContainerDefinitions": [container.to_dict()],
            },
        )
    )

    return MigrationTask(
        task_definition=task_definition,
        security_group=security_group,
        log_group=log_group,
        template=template,
    )


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


@dataclass
class RetryPolicy:
    """
    Fixed-interval polling with a fixed attempt budget.

    ``sleep`` is injectable so tests can run a full budget instantly.
    """

    interval: float = 6.0
    max_attempts: int = 50
    sleep: Callable[[float], None] = time.sleep

    def wait_for(self, probe: Callable[[], T | None], phase: str) -> T:
        """
        Call ``probe`` until it returns a non-None value.

        Sleeps ``interval`` seconds after every miss, so a full budget spans
        ``max_attempts * interval`` seconds.

        Raises:
            TimedOut: If ``max_attempts`` probes all returned None
        """
        for attempt in range(1, self.max_attempts + 1):
            result = probe()
            if result is not None:
                logger.debug("Phase %s satisfied after %d attempt(s)", phase, attempt)
                return result
            self.sleep(self.interval)
        raise TimedOut(phase, self.max_attempts)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class MigrationTaskOrchestrator:
    """
    Runs the migration task once and verifies its exit code.

    The RUNNING-task check and the launch are two separate API calls with
    no lock between them. Two deployments applied at the same moment can
    both pass the check and both launch. Deployments of one stack must be
    serialized by the operator.

    Args:
        ecs_client: boto3 ECS client (created on first use if omitted)
        region: AWS region for the default client
        retry_policy: Polling policy used for both waiting phases
        clock: Source of the epoch timestamp used in the task group name
    """

    def __init__(
        self,
        ecs_client: Any = None,
        region: str | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.region = region
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock
        self._client = ecs_client

    @property
    def client(self) -> Any:
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.region:
                kwargs["region_name"] = self.region
            self._client = boto3.client("ecs", **kwargs)
        return self._client

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response: dict[str, Any] = getattr(self.client, operation)(**kwargs)
        except ClientError as e:
            logger.error("ECS %s failed: %s", operation, e)
            raise UpstreamQueryError(operation, e) from e
        return response

    def _running_tasks(self, cluster: str, family: str) -> list[str]:
        response = self._call(
            "list_tasks", cluster=cluster, family=family, desiredStatus=STATUS_RUNNING
        )
        return list(response.get("taskArns", []))

    def _describe(self, cluster: str, task_arn: str) -> dict[str, Any]:
        response = self._call("describe_tasks", cluster=cluster, tasks=[task_arn])
        tasks = response.get("tasks") or []
        if not tasks:
            raise UpstreamQueryError("describe_tasks", RuntimeError(f"task {task_arn} not found"))
        task: dict[str, Any] = tasks[0]
        return task

    def _await(
        self, execution: TaskExecution, statuses: tuple[str, ...], phase: str
    ) -> dict[str, Any]:
        def probe() -> dict[str, Any] | None:
            task = self._describe(execution.cluster, execution.task_arn or "")
            status = task.get("lastStatus")
            logger.debug("Migration task %s status: %s", execution.task_arn, status)
            return task if status in statuses else None

        try:
            return self.retry_policy.wait_for(probe, phase)
        except TimedOut as e:
            execution.transition(TaskState.TIMED_OUT)
            raise TimedOut(phase, e.attempts, execution.task_arn) from e

    def run_migration(
        self,
        cluster: str,
        task_definition: str,
        placement: TaskPlacement,
        execute: bool = True,
        dry_run: bool = False,
        family: str = MIGRATION_FAMILY,
    ) -> TaskExecution:
        """
        Run the migration task to completion.

        Args:
            cluster: ECS cluster name or ARN
            task_definition: Task definition ARN (or family:revision)
            placement: Subnet and security group for the task
            execute: When False the run is skipped
            dry_run: When True the run is skipped
            family: Task family used for the mutual-exclusion check

        Returns:
            The execution record, in state STOPPED with exit code 0, or
            SKIPPED for dry runs

        Raises:
            ConflictDetected: A task of ``family`` is already RUNNING
            LaunchFailed: The launch produced no task
            TimedOut: A polling phase exhausted its budget
            MigrationFailed: The container exited non-zero
            UpstreamQueryError: An ECS API call failed
        """
        execution = TaskExecution(
            family=family,
            cluster=cluster,
            task_definition=task_definition,
            placement=placement,
        )

        if dry_run or not execute:
            logger.info(
                "Skipping database migration task (dry_run=%s, execute=%s)", dry_run, execute
            )
            execution.transition(TaskState.SKIPPED)
            return execution

        running = self._running_tasks(cluster, family)
        if running:
            logger.warning("Migration task family %s already running: %s", family, running)
            execution.transition(TaskState.CONFLICT_DETECTED)
            raise ConflictDetected(family, running)

        execution.group = f"DBMigration-{int(self.clock())}"
        logger.info("Launching migration task %s in group %s", task_definition, execution.group)
        response = self._call(
            "run_task",
            cluster=cluster,
            count=1,
            group=execution.group,
            taskDefinition=task_definition,
            launchType="FARGATE",
            networkConfiguration=placement.to_network_configuration(),
        )
        tasks = response.get("tasks") or []
        if not tasks or not tasks[0].get("taskArn"):
            failures = response.get("failures") or []
            reason = ", ".join(str(f.get("reason", "unknown")) for f in failures)
            execution.transition(TaskState.LAUNCH_FAILED)
            raise LaunchFailed(family, reason or "no task returned")

        execution.task_arn = tasks[0]["taskArn"]
        execution.transition(TaskState.SUBMITTED)

        self._await(execution, (STATUS_RUNNING,), PHASE_AWAITING_RUNNING)
        execution.transition(TaskState.RUNNING)
        logger.info("Migration task %s is running", execution.task_arn)
        task = self._await(execution, (STATUS_STOPPED,), PHASE_AWAITING_STOPPED)

        containers = task.get("containers") or [{}]
        execution.exit_code = containers[0].get("exitCode")
        execution.stopped_reason = task.get("stoppedReason")
        execution.transition(TaskState.STOPPED)

        if execution.exit_code != 0:
            logger.error(
                "Migration task %s exited with code %s", execution.task_arn, execution.exit_code
            )
            raise MigrationFailed(
                execution.exit_code,
                task_arn=execution.task_arn,
                stopped_reason=execution.stopped_reason,
                log_group=MIGRATION_LOG_GROUP,
            )

        logger.info("Migration task %s completed successfully", execution.task_arn)
        return execution

"""Exceptions for ecs-platform."""

from typing import Any

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class EcsPlatformError(Exception):
    """
    Base exception for all ecs-platform errors.

    All exceptions raised by this package inherit from this class,
    allowing callers to catch all package-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class PartitionError(EcsPlatformError):
    """
    Base exception for partition resolution errors.

    Always fatal to the enclosing composition; never retried or defaulted.
    """

    pass


class CompositionError(EcsPlatformError):
    """Base exception for errors while composing the resource graph."""

    pass


class MigrationError(EcsPlatformError):
    """
    Base exception for migration task errors.

    Every terminal failure state of a migration run has its own subclass
    so that callers can decide between waiting, re-running and investigating.
    """

    pass


class InfrastructureError(EcsPlatformError):
    """Base exception for CloudFormation deployment errors."""

    pass


# ---------------------------------------------------------------------------
# Input Exceptions
# ---------------------------------------------------------------------------


class ValidationError(EcsPlatformError):
    """Raised when a user-supplied name or value is invalid."""

    def __init__(self, field: str, value: str, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}: {value!r}. {reason}")


class ConfigurationError(EcsPlatformError):
    """Raised when deployment configuration is missing or malformed."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        self.missing = missing or []
        if self.missing:
            message = f"{message}: {', '.join(self.missing)}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Partition Exceptions
# ---------------------------------------------------------------------------


class InvalidIdentifierFormat(PartitionError):  # noqa: N818
    """Raised when an identifier has fewer than two colon-delimited segments."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(
            f"Invalid identifier format: {identifier!r} "
            "(expected at least two colon-delimited segments)"
        )


class PartitionMismatch(PartitionError):  # noqa: N818
    """
    Raised when an identifier carries a partition other than the region's.

    Attributes:
        identifier: The offending identifier
        expected: Partition token derived from the deployment region
        actual: Partition token found in the identifier
    """

    def __init__(self, identifier: str, expected: str, actual: str) -> None:
        self.identifier = identifier
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Partition mismatch for {identifier!r}: expected '{expected}', found '{actual}'"
        )


# ---------------------------------------------------------------------------
# Composition Exceptions
# ---------------------------------------------------------------------------


class CompositionAborted(CompositionError):  # noqa: N818
    """
    Raised when any step of a service topology composition fails.

    The partially built topology is discarded. Resources the platform
    already created are left for the operator's next idempotent run.

    Attributes:
        step: Name of the failing build step
        service: Service being composed
        cause: The underlying exception
    """

    def __init__(self, step: str, service: str, cause: Exception | None = None) -> None:
        self.step = step
        self.service = service
        self.cause = cause
        msg = f"Composition of service '{service}' aborted at step '{step}'"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class DuplicateResourceError(CompositionError):
    """Raised when a logical id is added to a template twice."""

    def __init__(self, logical_id: str) -> None:
        self.logical_id = logical_id
        super().__init__(f"Resource already defined: {logical_id}")


class UnresolvedDependencyError(CompositionError):
    """Raised when a resource depends on one that has not been added yet."""

    def __init__(self, logical_id: str, dependency: str) -> None:
        self.logical_id = logical_id
        self.dependency = dependency
        super().__init__(f"Resource {logical_id} depends on undefined resource {dependency}")


# ---------------------------------------------------------------------------
# Migration Exceptions
# ---------------------------------------------------------------------------


class ConflictDetected(MigrationError):  # noqa: N818
    """
    Raised when tasks of the migration family are already RUNNING.

    Recoverable by operator action: wait for the running task to finish
    and re-run the deployment.
    """

    def __init__(self, family: str, task_arns: list[str]) -> None:
        self.family = family
        self.task_arns = list(task_arns)
        super().__init__(
            f"Migration task family '{family}' already has running tasks: "
            f"{', '.join(self.task_arns)}"
        )


class LaunchFailed(MigrationError):  # noqa: N818
    """Raised when run_task returns no task or a task without an ARN."""

    def __init__(self, family: str, reason: str) -> None:
        self.family = family
        self.reason = reason
        super().__init__(f"Failed to launch migration task '{family}': {reason}")


class TimedOut(MigrationError):  # noqa: N818
    """
    Raised when a polling phase exhausts its attempt budget.

    Attributes:
        phase: ``"awaiting-running"`` or ``"awaiting-stopped"``
        attempts: Number of status queries made in the phase
        task_arn: The task being waited on
    """

    def __init__(self, phase: str, attempts: int, task_arn: str | None = None) -> None:
        self.phase = phase
        self.attempts = attempts
        self.task_arn = task_arn
        msg = f"Timed out in phase '{phase}' after {attempts} attempts"
        if task_arn:
            msg += f" (task: {task_arn})"
        super().__init__(msg)


class MigrationFailed(MigrationError):  # noqa: N818
    """
    Raised when the migration container stops with a non-zero exit code.

    Never retried automatically. The task's log stream holds the diagnostics.
    """

    def __init__(
        self,
        exit_code: int | None,
        task_arn: str | None = None,
        stopped_reason: str | None = None,
        log_group: str | None = None,
    ) -> None:
        self.exit_code = exit_code
        self.task_arn = task_arn
        self.stopped_reason = stopped_reason
        self.log_group = log_group
        msg = f"Migration task exited with code {exit_code}"
        if stopped_reason:
            msg += f" ({stopped_reason})"
        if log_group:
            msg += f". Check log group '{log_group}' for details."
        else:
            msg += ". Check the task's log stream for details."
        super().__init__(msg)


class UpstreamQueryError(MigrationError):
    """Raised when a container platform API call fails."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        msg = f"ECS {operation} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Infrastructure Exceptions
# ---------------------------------------------------------------------------


class StackDeploymentError(InfrastructureError):
    """Raised when a CloudFormation create, update or delete fails."""

    def __init__(
        self, stack_name: str, reason: str, events: list[dict[str, Any]] | None = None
    ) -> None:
        self.stack_name = stack_name
        self.reason = reason
        self.events = events or []
        super().__init__(f"Stack {stack_name} deployment failed: {reason}")

"""Container log drivers.

The topology composer depends only on the ``LogDriver`` interface and
embeds ``configuration()`` verbatim in the container definition.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from .exceptions import ConfigurationError
from .models import DeploymentContext
from .naming import logical_id
from .template import Resource, ref

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7


class LogType(Enum):
    AWSLOGS = "awslogs"
    AWSFIRELENS = "awsfirelens"
    SPLUNK = "splunk"


class LogDriver(ABC):
    """Capability to configure container logging for one service."""

    @abstractmethod
    def configuration(self) -> dict[str, Any]:
        """Log configuration block for a container definition."""

    def resources(self) -> list[Resource]:
        """Resources the driver needs (e.g. a log group). Empty by default."""
        return []


class AwsLogsDriver(LogDriver):
    """CloudWatch Logs via the ``awslogs`` driver, with its own log group."""

    def __init__(
        self,
        name: str,
        region: str,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        log_group_name: str | None = None,
    ) -> None:
        self.name = name
        self.region = region
        self.retention_days = retention_days
        self.log_group_name = log_group_name
        self.log_group_id = logical_id(name, "log-group")

    def resources(self) -> list[Resource]:
        properties: dict[str, Any] = {"RetentionInDays": self.retention_days}
        if self.log_group_name:
            properties["LogGroupName"] = self.log_group_name
        return [Resource(self.log_group_id, "AWS::Logs::LogGroup", properties)]

    def configuration(self) -> dict[str, Any]:
        return {
            "LogDriver": LogType.AWSLOGS.value,
            "Options": {
                "awslogs-region": self.region,
                "awslogs-group": ref(self.log_group_id),
                "awslogs-stream-prefix": self.name,
            },
        }


def _parse_args(json_args: str | None) -> dict[str, Any]:
    if not json_args:
        return {}
    try:
        args = json.loads(json_args)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid log driver arguments: {e}") from e
    if not isinstance(args, dict):
        raise ConfigurationError("Log driver arguments must be a JSON object")
    # Accept camelCase, PascalCase and snake_case keys
    return {k.replace("_", "").lower(): v for k, v in args.items()}


def build_log_driver(
    log_type: LogType | str,
    name: str,
    json_args: str | None,
    context: DeploymentContext,
) -> LogDriver:
    """
    Create the log driver for a service.

    Args:
        log_type: Log backend
        name: Service name, used for the log group and stream prefix
        json_args: JSON-encoded backend arguments (e.g. ``{"retentionDays": 14}``)
        context: Deployment context supplying the region

    Raises:
        ConfigurationError: If the arguments are malformed or the backend is
            not supported
    """
    try:
        log_type = LogType(log_type)
    except ValueError as e:
        raise ConfigurationError(f"Unknown log type: {log_type}") from e

    args = _parse_args(json_args)

    if log_type is LogType.AWSLOGS:
        logger.debug("Creating awslogs (CloudWatch) log configuration for %s", name)
        retention = int(args.get("retentiondays") or DEFAULT_RETENTION_DAYS)
        return AwsLogsDriver(name=name, region=context.region, retention_days=retention)

    raise ConfigurationError(f"Log type '{log_type.value}' is not supported")

"""Tests for container log drivers."""

import pytest

from ecs_platform.exceptions import ConfigurationError
from ecs_platform.logs import AwsLogsDriver, LogType, build_log_driver
from ecs_platform.models import DeploymentContext


class TestAwsLogsDriver:
    def test_configuration(self) -> None:
        driver = AwsLogsDriver("pulumi-api", "us-west-2")
        assert driver.configuration() == {
            "LogDriver": "awslogs",
            "Options": {
                "awslogs-region": "us-west-2",
                "awslogs-group": {"Ref": "PulumiApiLogGroup"},
                "awslogs-stream-prefix": "pulumi-api",
            },
        }

    def test_log_group_resource(self) -> None:
        (group,) = AwsLogsDriver("pulumi-api", "us-west-2", retention_days=14).resources()
        assert group.logical_id == "PulumiApiLogGroup"
        assert group.type == "AWS::Logs::LogGroup"
        assert group.properties == {"RetentionInDays": 14}

    def test_named_log_group(self) -> None:
        (group,) = AwsLogsDriver("svc", "us-west-2", log_group_name="custom").resources()
        assert group.properties["LogGroupName"] == "custom"


class TestBuildLogDriver:
    """Tests for build_log_driver."""

    def test_default_retention(self, context: DeploymentContext) -> None:
        driver = build_log_driver(LogType.AWSLOGS, "pulumi-api", None, context)
        assert isinstance(driver, AwsLogsDriver)
        assert driver.retention_days == 7
        assert driver.region == "us-west-2"

    @pytest.mark.parametrize(
        "args", ['{"retentionDays": 30}', '{"RetentionDays": 30}', '{"retention_days": 30}']
    )
    def test_retention_argument_spellings(self, context: DeploymentContext, args: str) -> None:
        driver = build_log_driver("awslogs", "pulumi-api", args, context)
        assert isinstance(driver, AwsLogsDriver)
        assert driver.retention_days == 30

    def test_invalid_json(self, context: DeploymentContext) -> None:
        with pytest.raises(ConfigurationError, match="Invalid log driver arguments"):
            build_log_driver(LogType.AWSLOGS, "pulumi-api", "{not json", context)

    def test_non_object_arguments(self, context: DeploymentContext) -> None:
        with pytest.raises(ConfigurationError, match="JSON object"):
            build_log_driver(LogType.AWSLOGS, "pulumi-api", "[1, 2]", context)

    @pytest.mark.parametrize("log_type", [LogType.AWSFIRELENS, LogType.SPLUNK])
    def test_unsupported_backends(self, context: DeploymentContext, log_type: LogType) -> None:
        with pytest.raises(ConfigurationError, match="not supported"):
            build_log_driver(log_type, "pulumi-api", None, context)

    def test_unknown_type(self, context: DeploymentContext) -> None:
        with pytest.raises(ConfigurationError, match="Unknown log type"):
            build_log_driver("syslog", "pulumi-api", None, context)

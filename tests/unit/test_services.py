"""Tests for the API and console service definitions."""

from typing import Any

import pytest

from ecs_platform.config import DeploymentConfig
from ecs_platform.load_balancers import build_load_balancers
from ecs_platform.logs import AwsLogsDriver
from ecs_platform.secrets import SecretsProvider
from ecs_platform.services import (
    API_DEFAULTS,
    CONSOLE_DEFAULTS,
    api_environment,
    api_secret_values,
    build_api_service,
    build_console_service,
    console_environment,
    ecr_image,
)


def env(variables: Any) -> dict[str, Any]:
    return {v.name: v.value for v in variables}


@pytest.fixture
def log_driver() -> AwsLogsDriver:
    return AwsLogsDriver("pulumi-api", "us-west-2")


class TestEcrImage:
    """Tests for ecr_image."""

    def test_commercial(self, config: DeploymentConfig) -> None:
        assert ecr_image(config, "pulumi/service") == (
            "123456789012.dkr.ecr.us-west-2.amazonaws.com/pulumi/service:20240101-1234"
        )

    def test_china_registry_suffix(self, config_data: dict[str, Any]) -> None:
        config_data["region"] = "cn-north-1"
        config = DeploymentConfig.from_dict(config_data)
        assert ecr_image(config, "pulumi/console") == (
            "123456789012.dkr.ecr.cn-north-1.amazonaws.com.cn/pulumi/console:20240101-1234"
        )

    def test_registry_account_and_prefix(self, config_data: dict[str, Any]) -> None:
        config_data["ecrRepoAccountId"] = "999999999999"
        config_data["imagePrefix"] = "mirror/"
        config = DeploymentConfig.from_dict(config_data)
        assert ecr_image(config, "pulumi/service") == (
            "999999999999.dkr.ecr.us-west-2.amazonaws.com/mirror/pulumi/service:20240101-1234"
        )


class TestApiService:
    """Tests for the API service definition."""

    def test_environment(self, config: DeploymentConfig) -> None:
        variables = env(api_environment(config))
        assert variables["PULUMI_DATABASE_ENDPOINT"] == "db.cluster.local:3306"
        assert variables["PULUMI_DATABASE_PING_ENDPOINT"] == "db.cluster.local"
        assert variables["PULUMI_API_DOMAIN"] == "api.pulumi.example.com"
        assert variables["PULUMI_CONSOLE_DOMAIN"] == "app.pulumi.example.com"
        assert variables["PULUMI_OBJECTS_BUCKET"] == "pulumi-checkpoints"
        assert "SMTP_SERVER" not in variables
        assert "PULUMI_DISABLE_EMAIL_LOGIN" not in variables

    def test_no_secret_values_in_environment(self, config: DeploymentConfig) -> None:
        values = set(env(api_environment(config)).values())
        assert "hunter2" not in values
        assert "secret-key" not in values

    def test_smtp_and_saml(self, config_data: dict[str, Any]) -> None:
        config_data["smtp"] = {
            "server": "smtp.example.com:587",
            "username": "mailer",
            "password": "mail-secret",
            "genericSender": "noreply@example.com",
        }
        config_data["saml"] = {"certPublicKey": "PUBLIC", "certPrivateKey": "PRIVATE"}
        config_data["apiDisableEmailLogin"] = True
        config = DeploymentConfig.from_dict(config_data)

        variables = env(api_environment(config))
        assert variables["SMTP_SERVER"] == "smtp.example.com:587"
        assert variables["SAML_CERTIFICATE_PUBLIC_KEY"] == "PUBLIC"
        assert variables["PULUMI_DISABLE_EMAIL_LOGIN"] == "true"

        secret_names = [name for name, _ in api_secret_values(config)]
        assert "SMTP_PASSWORD" in secret_names
        assert "SAML_CERTIFICATE_PRIVATE_KEY" in secret_names

    def test_secrets_are_references(
        self, config: DeploymentConfig, log_driver: AwsLogsDriver
    ) -> None:
        context = config.context()
        secrets = SecretsProvider(context, config.kms_key_arn)
        lbs = build_load_balancers(context, config.network(), config.certificate_arn)
        spec = build_api_service(config, lbs, secrets, log_driver)

        references = {s.name: s.value_from for s in spec.container.secrets}
        assert references["PULUMI_DATABASE_USER_PASSWORD"] == {
            "Ref": "PulumiApiPulumiDatabaseUserPasswordSecret"
        }
        assert "hunter2" in secrets.values.values()

    def test_service_spec(self, config: DeploymentConfig, log_driver: AwsLogsDriver) -> None:
        context = config.context()
        secrets = SecretsProvider(context, config.kms_key_arn)
        lbs = build_load_balancers(context, config.network(), config.certificate_arn)
        spec = build_api_service(config, lbs, secrets, log_driver)

        assert spec.name == "pulumi-api"
        assert spec.port == 8080
        assert spec.health_check.path == "/api/status"
        assert spec.sizing == API_DEFAULTS
        assert spec.host_headers == ("api.pulumi.example.com", lbs.public_dns_name)
        assert spec.priority == 1
        assert spec.database_ingress
        assert [p.name for p in spec.task_policies] == ["object-storage", "key-management"]
        assert spec.family == "pulumi-service-task"

    def test_sizing_overrides(self, config_data: dict[str, Any], log_driver: AwsLogsDriver) -> None:
        config_data["api"] = {"taskCpu": 1024, "desiredCount": 5}
        config = DeploymentConfig.from_dict(config_data)
        context = config.context()
        secrets = SecretsProvider(context, config.kms_key_arn)
        lbs = build_load_balancers(context, config.network(), config.certificate_arn)
        sizing = build_api_service(config, lbs, secrets, log_driver).sizing

        assert sizing.task_cpu == 1024
        assert sizing.container_cpu == 1024
        assert sizing.task_memory == 1024
        assert sizing.desired_count == 5


class TestConsoleService:
    """Tests for the console service definition."""

    def test_environment(self, config: DeploymentConfig) -> None:
        variables = env(console_environment(config))
        assert variables["PULUMI_API"] == "https://api.pulumi.example.com"
        assert variables["RECAPTCHA_SITE_KEY"] == "site-key"
        assert "PULUMI_API_INTERNAL_ENDPOINT" not in variables

    def test_restricted_internal_endpoint(self, restricted_config: DeploymentConfig) -> None:
        variables = env(console_environment(restricted_config))
        assert variables["PULUMI_API_INTERNAL_ENDPOINT"] == (
            "https://api-internal.pulumi.example.com"
        )

    def test_service_spec(self, config: DeploymentConfig, log_driver: AwsLogsDriver) -> None:
        spec = build_console_service(config, log_driver)
        assert spec.name == "pulumi-console"
        assert spec.port == 3000
        assert spec.sizing == CONSOLE_DEFAULTS
        assert spec.host_headers == ("app.pulumi.example.com",)
        assert spec.path_patterns == ("/*",)
        assert spec.priority == 2
        assert not spec.container.secrets
        assert not spec.extra_egress
        assert spec.private_listener_ports == (8080, 8443)

    def test_restricted_extra_egress(
        self, restricted_config: DeploymentConfig, log_driver: AwsLogsDriver
    ) -> None:
        spec = build_console_service(restricted_config, log_driver)
        assert [(r.from_port, r.cidr) for r in spec.extra_egress] == [
            (443, "10.0.0.0/16"),
            (80, "10.0.0.0/16"),
        ]

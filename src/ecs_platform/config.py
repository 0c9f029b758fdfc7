"""Deployment configuration.

Values are read from a YAML file whose keys may be snake_case or the
camelCase used by existing stack configuration files, then overridden by
``ECS_PLATFORM_*`` environment variables.

Example::

    region: us-west-2
    accountId: "123456789012"
    project: selfhosted
    stack: prod
    vpcId: vpc-0abc
    vpcCidr: 10.0.0.0/16
    publicSubnetIds: [subnet-1, subnet-2]
    privateSubnetIds: [subnet-3, subnet-4]
    certificateArn: arn:aws:acm:us-west-2:123456789012:certificate/abc
    kmsKeyArn: arn:aws:kms:us-west-2:123456789012:key/abc
    database:
      endpoint: db.cluster.local
      securityGroupId: sg-0db
      username: admin
      password: secret
    imageTag: "20240101-1234"
    route53ZoneName: example.com
    objectsBucket: pulumi-checkpoints
    policyPacksBucket: pulumi-policypacks
    licenseKey: ...
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .logs import LogType
from .models import DatabaseContext, DeploymentContext, NetworkContext
from .naming import normalize_name

ENV_PREFIX = "ECS_PLATFORM_"
ENV_OVERRIDES = ("region", "stack", "image_tag")

REQUIRED_KEYS = (
    "region",
    "account_id",
    "project",
    "stack",
    "vpc_id",
    "vpc_cidr",
    "public_subnet_ids",
    "private_subnet_ids",
    "certificate_arn",
    "kms_key_arn",
    "database",
    "image_tag",
    "route53_zone_name",
    "objects_bucket",
    "policy_packs_bucket",
)

# Legacy keys from earlier stack configuration files
KEY_ALIASES = {
    "api_desired_number_tasks": "api_desired_count",
    "console_desired_number_tasks": "console_desired_count",
    "white_list_cidr_blocks": "whitelist_cidrs",
    "ecr_repo_account_id": "ecr_account_id",
    "api_disable_email_sign": "api_disable_email_signup",
    "enable_private_load_balancer_and_limit_egress": "restricted_egress",
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def to_snake_case(key: str) -> str:
    """``privateSubnetIds`` -> ``private_subnet_ids``."""
    return _CAMEL_BOUNDARY.sub("_", key).replace("-", "_").lower()


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in data.items():
        name = to_snake_case(key)
        name = KEY_ALIASES.get(name, name)
        if isinstance(value, dict):
            value = _normalize_keys(value)
        result[name] = value
    return result


@dataclass(frozen=True)
class ServiceSizing:
    """Raw sizing values; zero means "use the documented default"."""

    task_cpu: int = 0
    task_memory: int = 0
    container_cpu: int = 0
    container_memory_reservation: int = 0
    desired_count: int = 0


@dataclass(frozen=True)
class SmtpSettings:
    server: str
    username: str
    password: str
    generic_sender: str


@dataclass(frozen=True)
class SamlSettings:
    cert_public_key: str
    cert_private_key: str


@dataclass
class DeploymentConfig:
    """All externally resolved values a deployment needs."""

    region: str
    account_id: str
    project: str
    stack: str
    vpc_id: str
    vpc_cidr: str
    public_subnet_ids: list[str]
    private_subnet_ids: list[str]
    certificate_arn: str
    kms_key_arn: str
    database: DatabaseContext
    image_tag: str
    route53_zone_name: str
    objects_bucket: str
    policy_packs_bucket: str
    route53_subdomain: str = ""
    image_prefix: str = ""
    ecr_account_id: str = ""
    license_key: str = ""
    recaptcha_site_key: str = ""
    recaptcha_secret_key: str = ""
    whitelist_cidrs: list[str] = field(default_factory=list)
    private_route_table_ids: list[str] = field(default_factory=list)
    storage_prefix_list_id: str = ""
    smtp: SmtpSettings | None = None
    saml: SamlSettings | None = None
    api: ServiceSizing = field(default_factory=ServiceSizing)
    console: ServiceSizing = field(default_factory=ServiceSizing)
    api_disable_email_login: bool = False
    api_disable_email_signup: bool = False
    console_hide_email_login: bool = False
    console_hide_email_signup: bool = False
    log_type: LogType = LogType.AWSLOGS
    log_args: str = ""
    restricted_egress: bool = False
    enable_private_load_balancer: bool = False
    enable_access_logs: bool = False
    execute_migrations: bool = True

    def __post_init__(self) -> None:
        normalize_name(self.stack)
        if self.restricted_egress:
            # Restricted egress routes through the internal load balancer
            self.enable_private_load_balancer = True
            if not self.storage_prefix_list_id:
                raise ConfigurationError(
                    "Restricted egress requires configuration", ["storage_prefix_list_id"]
                )

    def context(self) -> DeploymentContext:
        return DeploymentContext(
            region=self.region,
            account_id=self.account_id,
            project=self.project,
            stack=self.stack,
        )

    def network(
        self, endpoint_security_group: Any = None, storage_prefix_list: Any = None
    ) -> NetworkContext:
        return NetworkContext(
            vpc_id=self.vpc_id,
            vpc_cidr=self.vpc_cidr,
            public_subnet_ids=tuple(self.public_subnet_ids),
            private_subnet_ids=tuple(self.private_subnet_ids),
            database=self.database,
            endpoint_security_group=endpoint_security_group,
            storage_prefix_list=storage_prefix_list,
        )

    @property
    def secrets_prefix(self) -> str:
        return f"{self.project}/{self.stack}"

    @property
    def stack_name(self) -> str:
        """CloudFormation stack name, ``{project}-{stack}``."""
        return normalize_name(f"{self.project}-{self.stack}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentConfig:
        """
        Build a config from a mapping with snake_case or camelCase keys.

        Raises:
            ConfigurationError: If required keys are missing or values are malformed
        """
        values = _normalize_keys(data)
        missing = [k for k in REQUIRED_KEYS if values.get(k) in (None, "", [])]
        if missing:
            raise ConfigurationError("Missing required configuration", missing)

        for role in ("api", "console"):
            values[role] = _sizing(values, role)

        values["database"] = _database(values["database"])
        if values.get("smtp"):
            values["smtp"] = SmtpSettings(**_pick(values["smtp"], SmtpSettings))
        if values.get("saml"):
            values["saml"] = SamlSettings(**_pick(values["saml"], SamlSettings))
        if "log_type" in values:
            try:
                values["log_type"] = LogType(values["log_type"])
            except ValueError as e:
                raise ConfigurationError(f"Unknown log type: {values['log_type']}") from e
        for key in ("public_subnet_ids", "private_subnet_ids", "whitelist_cidrs"):
            if isinstance(values.get(key), str):
                values[key] = [v.strip() for v in values[key].split(",") if v.strip()]

        values["account_id"] = str(values["account_id"])
        values["image_tag"] = str(values["image_tag"])
        return cls(**_pick(values, cls))


def _pick(values: dict[str, Any], target: type) -> dict[str, Any]:
    """Keep only keys that are fields of ``target``."""
    names = {f.name for f in fields(target)}
    return {k: v for k, v in values.items() if k in names}


def _sizing(values: dict[str, Any], role: str) -> ServiceSizing:
    nested = values.pop(role, None) or {}
    if not isinstance(nested, dict):
        raise ConfigurationError(f"'{role}' must be a mapping")
    sizing: dict[str, Any] = {}
    for f in fields(ServiceSizing):
        flat = values.pop(f"{role}_{f.name}", None)
        value = nested.get(f.name, flat)
        if value is not None:
            try:
                sizing[f.name] = int(value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid {role} {f.name}: {value!r}") from e
    return ServiceSizing(**sizing)


def _database(data: Any) -> DatabaseContext:
    if not isinstance(data, dict) or not data.get("endpoint"):
        raise ConfigurationError("Missing required configuration", ["database.endpoint"])
    values = _pick(data, DatabaseContext)
    if "port" in values:
        values["port"] = int(values["port"])
    return DatabaseContext(**values)


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Override selected keys from ``ECS_PLATFORM_<KEY>`` environment variables."""
    result = _normalize_keys(data)
    for key in ENV_OVERRIDES:
        value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
        if value:
            result[key] = value
    return result


def load_config(path: str | Path) -> DeploymentConfig:
    """
    Load deployment configuration from a YAML file.

    Raises:
        ConfigurationError: If the file is unreadable, not a mapping, or
            missing required values
    """
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    return DeploymentConfig.from_dict(apply_env_overrides(data))

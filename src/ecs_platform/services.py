"""API and console service definitions.

Turns deployment configuration into ``ServiceSpec`` records for the
topology composer: container image, environment, secrets, sizing
defaults, routing conditions and task policies.
"""

from __future__ import annotations

import logging
from typing import Any

from .config import DeploymentConfig
from .load_balancers import SharedLoadBalancers
from .logs import LogDriver
from .models import (
    ContainerDefinition,
    EnvironmentVariable,
    HealthCheck,
    SecurityGroupRule,
    ServiceSpec,
    TaskSizing,
    Ulimit,
)
from .naming import service_urls
from .partition import resolve_endpoint
from .policies import PolicyDocumentComposer
from .secrets import SecretsProvider

logger = logging.getLogger(__name__)

API_NAME = "pulumi-api"
API_PORT = 8080
API_CONTAINER_NAME = "pulumi-service"
API_HEALTH_PATH = "/api/status"
API_DEFAULTS = TaskSizing(
    task_cpu=512,
    task_memory=1024,
    container_cpu=512,
    container_memory_reservation=384,
    desired_count=3,
)
API_ULIMITS = (Ulimit(name="nofile", soft=100000, hard=200000),)

CONSOLE_NAME = "pulumi-console"
CONSOLE_PORT = 3000
CONSOLE_CONTAINER_NAME = "pulumi-console"
CONSOLE_HEALTH_PATH = "/"
CONSOLE_DEFAULTS = TaskSizing(
    task_cpu=256,
    task_memory=512,
    container_cpu=256,
    container_memory_reservation=128,
    desired_count=3,
)
CONSOLE_PRIVATE_PORTS = (8080, 8443)


def ecr_image(config: DeploymentConfig, repository: str) -> str:
    """Fully qualified ECR image for ``repository`` at the configured tag."""
    account = config.ecr_account_id or config.account_id
    registry = resolve_endpoint(
        config.region, f"{account}.dkr.ecr.{config.region}.amazonaws.com"
    )
    return f"{registry}/{config.image_prefix}{repository}:{config.image_tag}"


def _env(*pairs: tuple[str, Any]) -> tuple[EnvironmentVariable, ...]:
    return tuple(EnvironmentVariable(name, value) for name, value in pairs)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


def api_environment(config: DeploymentConfig) -> tuple[EnvironmentVariable, ...]:
    urls = service_urls(config.route53_zone_name, config.route53_subdomain)
    db = config.database
    pairs: list[tuple[str, Any]] = [
        ("PULUMI_LICENSE_KEY", config.license_key),
        ("PULUMI_ENTERPRISE", "true"),
        ("PULUMI_DATABASE_ENDPOINT", db.address),
        ("PULUMI_DATABASE_PING_ENDPOINT", db.endpoint),
        ("PULUMI_DATABASE_NAME", db.name),
        ("PULUMI_API_DOMAIN", urls["api"]),
        ("PULUMI_CONSOLE_DOMAIN", urls["console"]),
        ("PULUMI_OBJECTS_BUCKET", config.objects_bucket),
        ("PULUMI_POLICY_PACK_BUCKET", config.policy_packs_bucket),
        ("PULUMI_KMS_KEY", config.kms_key_arn),
        ("AWS_REGION", config.region),
    ]
    if config.api_disable_email_login:
        pairs.append(("PULUMI_DISABLE_EMAIL_LOGIN", "true"))
    if config.api_disable_email_signup:
        pairs.append(("PULUMI_DISABLE_EMAIL_SIGNUP", "true"))
    if config.smtp:
        logger.debug("SMTP enabled")
        pairs += [
            ("SMTP_USERNAME", config.smtp.username),
            ("SMTP_SERVER", config.smtp.server),
            ("SMTP_GENERIC_SENDER", config.smtp.generic_sender),
        ]
    if config.saml:
        logger.debug("SAML SSO enabled")
        pairs.append(("SAML_CERTIFICATE_PUBLIC_KEY", config.saml.cert_public_key))
    return _env(*pairs)


def api_secret_values(config: DeploymentConfig) -> list[tuple[str, str | None]]:
    """(name, raw value) pairs stored in Secrets Manager for the API."""
    values: list[tuple[str, str | None]] = [
        ("PULUMI_DATABASE_USER_NAME", config.database.username),
        ("PULUMI_DATABASE_USER_PASSWORD", config.database.password),
        ("RECAPTCHA_SECRET_KEY", config.recaptcha_secret_key),
        ("LOGIN_RECAPTCHA_SECRET_KEY", config.recaptcha_secret_key),
    ]
    if config.smtp:
        values.append(("SMTP_PASSWORD", config.smtp.password))
    if config.saml:
        values.append(("SAML_CERTIFICATE_PRIVATE_KEY", config.saml.cert_private_key))
    return values


def build_api_service(
    config: DeploymentConfig,
    load_balancers: SharedLoadBalancers,
    secrets: SecretsProvider,
    log_driver: LogDriver,
) -> ServiceSpec:
    """Service spec for the Pulumi API."""
    urls = service_urls(config.route53_zone_name, config.route53_subdomain)
    policies = PolicyDocumentComposer(config.context())
    sizing = TaskSizing.resolve(
        API_DEFAULTS,
        task_cpu=config.api.task_cpu,
        task_memory=config.api.task_memory,
        container_cpu=config.api.container_cpu,
        container_memory_reservation=config.api.container_memory_reservation,
        desired_count=config.api.desired_count,
    )
    container = ContainerDefinition(
        name=API_CONTAINER_NAME,
        image=ecr_image(config, "pulumi/service"),
        environment=api_environment(config),
        secrets=tuple(secrets.secrets(API_NAME, api_secret_values(config))),
        ulimits=API_ULIMITS,
    )
    return ServiceSpec(
        name=API_NAME,
        container=container,
        port=API_PORT,
        health_check=HealthCheck(path=API_HEALTH_PATH),
        sizing=sizing,
        host_headers=(urls["api"], load_balancers.public_dns_name),
        log_driver=log_driver,
        priority=1,
        task_policies=(
            policies.object_storage([config.objects_bucket, config.policy_packs_bucket]),
            policies.key_management(config.kms_key_arn),
        ),
        database_ingress=True,
    )


# ---------------------------------------------------------------------------
# Console
# ---------------------------------------------------------------------------


def console_environment(config: DeploymentConfig) -> tuple[EnvironmentVariable, ...]:
    urls = service_urls(config.route53_zone_name, config.route53_subdomain)
    pairs: list[tuple[str, Any]] = [
        ("AWS_REGION", config.region),
        ("LOGIN_RECAPTCHA_SITE_KEY", config.recaptcha_site_key),
        ("RECAPTCHA_SITE_KEY", config.recaptcha_site_key),
        ("PULUMI_API", f"https://{urls['api']}"),
        ("PULUMI_CONSOLE_DOMAIN", urls["console"]),
        ("PULUMI_HOMEPAGE_DOMAIN", urls["console"]),
        ("PULUMI_ROOT_DOMAIN", config.route53_zone_name),
    ]
    if config.restricted_egress:
        # Resolves to the internal load balancer; the console has no internet egress
        pairs.append(("PULUMI_API_INTERNAL_ENDPOINT", f"https://{urls['api_internal']}"))
    if config.console_hide_email_login:
        pairs.append(("PULUMI_HIDE_EMAIL_LOGIN", "true"))
    if config.console_hide_email_signup:
        pairs.append(("PULUMI_HIDE_EMAIL_SIGNUP", "true"))
    if config.saml:
        pairs.append(("SAML_SSO_ENABLED", "true"))
    return _env(*pairs)


def build_console_service(
    config: DeploymentConfig,
    log_driver: LogDriver,
) -> ServiceSpec:
    """Service spec for the Pulumi console. The console holds no secrets."""
    urls = service_urls(config.route53_zone_name, config.route53_subdomain)
    sizing = TaskSizing.resolve(
        CONSOLE_DEFAULTS,
        task_cpu=config.console.task_cpu,
        task_memory=config.console.task_memory,
        container_cpu=config.console.container_cpu,
        container_memory_reservation=config.console.container_memory_reservation,
        desired_count=config.console.desired_count,
    )
    extra_egress: tuple[SecurityGroupRule, ...] = ()
    if config.restricted_egress:
        extra_egress = tuple(
            SecurityGroupRule(
                port,
                port,
                cidr=config.vpc_cidr,
                description=f"Allow egress on {port} to the VPC CIDR",
            )
            for port in (443, 80)
        )
    container = ContainerDefinition(
        name=CONSOLE_CONTAINER_NAME,
        image=ecr_image(config, "pulumi/console"),
        environment=console_environment(config),
    )
    return ServiceSpec(
        name=CONSOLE_NAME,
        container=container,
        port=CONSOLE_PORT,
        health_check=HealthCheck(path=CONSOLE_HEALTH_PATH),
        sizing=sizing,
        host_headers=(urls["console"],),
        path_patterns=("/*",),
        log_driver=log_driver,
        priority=2,
        extra_egress=extra_egress,
        private_listener_ports=CONSOLE_PRIVATE_PORTS,
    )

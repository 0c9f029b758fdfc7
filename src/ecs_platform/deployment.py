"""Platform composition and deployment.

``compose_platform`` assembles the full platform template from the
configuration. ``deploy_platform`` applies it with CloudFormation and then
runs the database migration task against the deployed cluster.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .config import DeploymentConfig
from .endpoints import VpcEndpoints, build_vpc_endpoints
from .infra.stack_manager import StackManager
from .load_balancers import SharedLoadBalancers, build_load_balancers, load_balancer_outputs
from .logs import build_log_driver
from .migration import (
    MigrationTask,
    MigrationTaskOrchestrator,
    RetryPolicy,
    migration_task_resources,
)
from .models import TaskExecution, TaskPlacement
from .secrets import SecretsProvider
from .services import build_api_service, build_console_service
from .template import Resource, Template
from .topology import ServiceTopology, ServiceTopologyComposer

logger = logging.getLogger(__name__)

CLUSTER_LOGICAL_ID = "PulumiCluster"

# Outputs read back after deployment to launch the migration task
CLUSTER_OUTPUT = "clusterName"
MIGRATION_TASK_OUTPUT = "migrationTaskDefinitionArn"
MIGRATION_SECURITY_GROUP_OUTPUT = "migrationSecurityGroupId"


@dataclass
class PlatformTemplate:
    """The composed platform plus the parameter values it must be deployed with."""

    template: Template
    parameters: dict[str, str]
    load_balancers: SharedLoadBalancers
    api: ServiceTopology
    console: ServiceTopology
    migration: MigrationTask
    endpoints: VpcEndpoints | None = None

    def to_yaml(self) -> str:
        return self.template.to_yaml()

    def to_json(self, indent: int | None = 2) -> str:
        return self.template.to_json(indent=indent)


@dataclass
class DeploymentResult:
    platform: PlatformTemplate
    stack: dict[str, Any] | None = None
    outputs: dict[str, str] | None = None
    migration: TaskExecution | None = None


def compose_platform(config: DeploymentConfig) -> PlatformTemplate:
    """
    Build the complete platform template.

    Raises:
        CompositionAborted: If a service topology fails to compose
        PartitionError: If a configured ARN belongs to another partition
        ConfigurationError: If the configuration cannot express the platform
    """
    context = config.context()
    logger.info(
        "Composing platform for %s/%s in %s (%s)",
        config.project,
        config.stack,
        config.region,
        context.partition.token,
    )
    template = Template(description=f"Pulumi self-hosted platform ({config.stack})")
    kms_key_arn = context.resolve(config.kms_key_arn)

    cluster = template.add(Resource(CLUSTER_LOGICAL_ID, "AWS::ECS::Cluster", {}))

    network = config.network()
    load_balancers = build_load_balancers(
        context,
        network,
        config.certificate_arn,
        whitelist_cidrs=config.whitelist_cidrs,
        enable_private=config.enable_private_load_balancer,
        enable_access_logs=config.enable_access_logs,
    )

    endpoints: VpcEndpoints | None = None
    if config.restricted_egress:
        endpoints = build_vpc_endpoints(context, network, config.private_route_table_ids)
        network = config.network(
            endpoint_security_group=endpoints.security_group.get_att("GroupId"),
            storage_prefix_list=config.storage_prefix_list_id,
        )

    secrets = SecretsProvider(context, kms_key_arn)
    api_spec = build_api_service(
        config,
        load_balancers,
        secrets,
        build_log_driver(config.log_type, "pulumi-api", config.log_args, context),
    )
    console_spec = build_console_service(
        config,
        build_log_driver(config.log_type, "pulumi-console", config.log_args, context),
    )

    composer = ServiceTopologyComposer(context, cluster.ref, kms_key_arn)
    api = composer.compose(api_spec, network, load_balancers, config.restricted_egress)
    console = composer.compose(console_spec, network, load_balancers, config.restricted_egress)

    migration = migration_task_resources(config, network, secrets)

    template.merge(load_balancers.template)
    if endpoints is not None:
        template.merge(endpoints.template)
    template.merge(secrets.template)
    template.merge(api.template)
    template.merge(console.template)
    template.merge(migration.template)

    outputs: dict[str, Any] = {CLUSTER_OUTPUT: cluster.ref}
    outputs.update(load_balancer_outputs(load_balancers))
    outputs.update(api.outputs())
    outputs.update(console.outputs())
    outputs.update(migration.outputs())
    for name, value in outputs.items():
        template.add_output(name, value)

    logger.info(
        "Composed platform: %d resources, %d parameters, %d outputs",
        len(template),
        len(template.parameters),
        len(template.outputs),
    )
    return PlatformTemplate(
        template=template,
        parameters=dict(secrets.values),
        load_balancers=load_balancers,
        api=api,
        console=console,
        migration=migration,
        endpoints=endpoints,
    )


async def deploy_platform(
    config: DeploymentConfig,
    dry_run: bool = False,
    ecs_client: Any = None,
    wait: bool = True,
    retry_policy: RetryPolicy | None = None,
    endpoint_url: str | None = None,
) -> DeploymentResult:
    """
    Compose, deploy and migrate.

    A dry run composes the template and logs the skipped migration without
    touching AWS. Without ``wait`` the stack is not ready for the migration
    task, so the migration is skipped as well.

    Raises:
        StackDeploymentError: If the stack create or update fails
        MigrationError: If the migration task does not finish cleanly
    """
    platform = compose_platform(config)
    result = DeploymentResult(platform=platform)
    orchestrator = MigrationTaskOrchestrator(
        ecs_client=ecs_client, region=config.region, retry_policy=retry_policy
    )

    if dry_run:
        logger.info("Dry run: not deploying stack %s", config.stack_name)
        result.migration = orchestrator.run_migration(
            cluster=CLUSTER_LOGICAL_ID,
            task_definition=platform.migration.task_definition.logical_id,
            placement=TaskPlacement(config.private_subnet_ids[0], ""),
            dry_run=True,
        )
        return result

    async with StackManager(config.stack_name, config.region, endpoint_url) as manager:
        result.stack = await manager.deploy(platform.template, platform.parameters, wait=wait)
        if not wait:
            logger.info("Not waiting for stack %s; skipping migration", config.stack_name)
            return result
        result.outputs = await manager.get_outputs()

    outputs = result.outputs
    placement = TaskPlacement(
        subnet_id=config.private_subnet_ids[0],
        security_group_id=outputs[MIGRATION_SECURITY_GROUP_OUTPUT],
    )
    # The orchestrator blocks between polls; keep it off the event loop
    result.migration = await asyncio.to_thread(
        orchestrator.run_migration,
        outputs[CLUSTER_OUTPUT],
        outputs[MIGRATION_TASK_OUTPUT],
        placement,
        config.execute_migrations,
    )
    return result

"""Command-line interface for ecs-platform deployments."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from botocore.exceptions import BotoCoreError, ClientError

from .config import load_config
from .deployment import compose_platform, deploy_platform
from .exceptions import EcsPlatformError, MigrationFailed
from .infra.stack_manager import StackManager
from .migration import MigrationTaskOrchestrator
from .models import TaskPlacement

AWS_ERRORS = (EcsPlatformError, ClientError, BotoCoreError)


@click.group()
@click.version_option(package_name="ecs-platform")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """ecs-platform service topology and migration CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _config_option(f):  # type: ignore[no-untyped-def]
    return click.option(
        "--config",
        "config_path",
        required=True,
        type=click.Path(exists=True, dir_okay=False),
        help="Deployment configuration file (YAML)",
    )(f)


@cli.command()
@_config_option
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Template output format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    help="Output file (default: stdout)",
)
def synth(config_path: str, output_format: str, output: str | None) -> None:
    """Compose the platform CloudFormation template without deploying it."""
    try:
        platform = compose_platform(load_config(config_path))
    except EcsPlatformError as e:
        click.echo(f"✗ Composition failed: {e}", err=True)
        sys.exit(1)

    body = platform.to_yaml() if output_format == "yaml" else platform.to_json()
    if output:
        Path(output).write_text(body)
        click.echo(f"✓ Template written to: {output}")
        click.echo(f"  Resources: {len(platform.template)}")
        click.echo(f"  Secret parameters: {len(platform.parameters)}")
    else:
        click.echo(body)


@cli.command()
@_config_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="Compose the template and skip the deployment and the migration task",
)
@click.option(
    "--wait/--no-wait",
    default=True,
    help="Wait for the stack to finish (required to run the migration task)",
)
def deploy(config_path: str, dry_run: bool, wait: bool) -> None:
    """Deploy the platform stack and run the database migration task."""
    try:
        config = load_config(config_path)
    except EcsPlatformError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    click.echo(f"Deploying stack: {config.stack_name}")
    click.echo(f"  Region: {config.region}")
    click.echo(f"  Image tag: {config.image_tag}")
    click.echo(f"  Restricted egress: {'enabled' if config.restricted_egress else 'disabled'}")
    click.echo(f"  Migrations: {'enabled' if config.execute_migrations else 'disabled'}")
    click.echo()

    async def _deploy() -> None:
        try:
            result = await deploy_platform(config, dry_run=dry_run, wait=wait)
        except MigrationFailed as e:
            click.echo(f"✗ Database migration failed: {e}", err=True)
            sys.exit(1)
        except AWS_ERRORS as e:
            click.echo(f"✗ Deployment failed: {e}", err=True)
            sys.exit(1)

        if dry_run:
            click.echo(f"✓ Dry run: {len(result.platform.template)} resources composed")
            click.echo("  Database migration skipped")
            return

        status = (result.stack or {}).get("status", "unknown")
        click.echo(f"✓ Stack {status.lower().replace('_', ' ')}")
        if not wait:
            click.echo("Stack update initiated. Use 'status' command to check progress.")
            click.echo("Note: the migration task runs only when deploying with --wait.")
            return

        if result.migration is not None:
            click.echo(f"✓ Database migration {result.migration.state.value.lower()}")
        for key in ("publicLoadBalancerDnsName", "internalLoadBalancerDnsName"):
            value = (result.outputs or {}).get(key)
            if value:
                click.echo(f"  {key}: {value}")

    asyncio.run(_deploy())


@cli.command()
@click.option("--cluster", required=True, help="ECS cluster name or ARN")
@click.option("--task-definition", required=True, help="Migration task definition ARN")
@click.option("--subnet", required=True, help="Subnet to run the task in")
@click.option("--security-group", required=True, help="Security group for the task")
@click.option("--region", help="AWS region (default: use boto3 defaults)")
@click.option("--dry-run", is_flag=True, help="Log the launch and skip it")
@click.option("--skip", is_flag=True, help="Skip the migration (same as disabling it)")
def migrate(
    cluster: str,
    task_definition: str,
    subnet: str,
    security_group: str,
    region: str | None,
    dry_run: bool,
    skip: bool,
) -> None:
    """Run the database migration task once and verify its exit code."""
    orchestrator = MigrationTaskOrchestrator(region=region)
    click.echo(f"Running migration task: {task_definition}")
    click.echo(f"  Cluster: {cluster}")

    try:
        execution = orchestrator.run_migration(
            cluster=cluster,
            task_definition=task_definition,
            placement=TaskPlacement(subnet_id=subnet, security_group_id=security_group),
            execute=not skip,
            dry_run=dry_run,
        )
    except AWS_ERRORS as e:
        click.echo(f"✗ Migration failed: {e}", err=True)
        sys.exit(1)

    if execution.task_arn:
        click.echo(f"  Task: {execution.task_arn}")
    click.echo(f"✓ Migration {execution.state.value.lower()}")


@cli.command()
@click.option(
    "--stack-name",
    required=True,
    help="CloudFormation stack name",
)
@click.option(
    "--region",
    help="AWS region (default: use boto3 defaults)",
)
def status(stack_name: str, region: str | None) -> None:
    """Get CloudFormation stack status."""

    async def _status() -> None:
        try:
            async with StackManager(stack_name, region) as manager:
                stack_status = await manager.get_stack_status()
                outputs = await manager.get_outputs() if stack_status else {}
        except AWS_ERRORS as e:
            click.echo(f"✗ Failed to get status: {e}", err=True)
            sys.exit(1)

        if stack_status is None:
            click.echo(f"Stack '{stack_name}' not found")
            sys.exit(1)

        click.echo(f"Stack: {stack_name}")
        click.echo(f"Status: {stack_status}")
        for key, value in outputs.items():
            click.echo(f"  {key}: {value}")

        if stack_status in ("CREATE_COMPLETE", "UPDATE_COMPLETE"):
            click.echo("✓ Stack is ready")
        elif "IN_PROGRESS" in stack_status:
            click.echo("⏳ Operation in progress...")
        elif "FAILED" in stack_status or "ROLLBACK" in stack_status:
            click.echo("✗ Stack operation failed", err=True)
            sys.exit(1)

    asyncio.run(_status())


@cli.command()
@click.option(
    "--stack-name",
    required=True,
    help="CloudFormation stack name to delete",
)
@click.option(
    "--region",
    help="AWS region (default: use boto3 defaults)",
)
@click.option(
    "--wait/--no-wait",
    default=True,
    help="Wait for stack deletion to complete",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt",
)
def delete(stack_name: str, region: str | None, wait: bool, yes: bool) -> None:
    """Delete CloudFormation stack."""

    if not yes:
        click.confirm(
            f"Are you sure you want to delete stack '{stack_name}'?",
            abort=True,
        )

    async def _delete() -> None:
        try:
            async with StackManager(stack_name, region) as manager:
                click.echo(f"Deleting stack: {stack_name}")
                await manager.delete_stack(wait=wait)
        except AWS_ERRORS as e:
            click.echo(f"✗ Deletion failed: {e}", err=True)
            sys.exit(1)

        if wait:
            click.echo(f"✓ Stack '{stack_name}' deleted successfully")
        else:
            click.echo("Stack deletion initiated. Use 'status' command to check progress.")

    asyncio.run(_delete())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

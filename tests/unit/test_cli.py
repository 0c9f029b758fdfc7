"""Tests for the command-line interface."""

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from ecs_platform.cli import cli
from ecs_platform.exceptions import ConflictDetected, MigrationFailed
from ecs_platform.infra.stack_manager import StackManager
from ecs_platform.models import TaskExecution, TaskPlacement, TaskState


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path, config_data: dict[str, Any]) -> Path:
    path = tmp_path / "prod.yaml"
    path.write_text(yaml.safe_dump(config_data))
    return path


def finished(state: TaskState, task_arn: str | None = None) -> TaskExecution:
    execution = TaskExecution(
        family="pulumi-migration-task",
        cluster="pulumi",
        task_definition="migration:1",
        placement=TaskPlacement("subnet-1", "sg-1"),
        task_arn=task_arn,
        exit_code=0,
    )
    execution.transition(state)
    return execution


class TestCLI:
    """Tests for the top-level group."""

    def test_help(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "ecs-platform service topology and migration CLI" in result.output
        for command in ("synth", "deploy", "migrate", "status", "delete"):
            assert command in result.output

    def test_deploy_help(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["deploy", "--help"])
        assert result.exit_code == 0
        assert "--dry-run" in result.output
        assert "--config" in result.output


class TestSynth:
    """Tests for the synth command."""

    def test_stdout(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["synth", "--config", str(config_file)])
        assert result.exit_code == 0
        document = yaml.safe_load(result.output)
        assert "PulumiCluster" in document["Resources"]
        assert "hunter2" not in result.output

    def test_json_to_file(self, runner: CliRunner, config_file: Path, tmp_path: Path) -> None:
        output = tmp_path / "platform.json"
        result = runner.invoke(
            cli,
            ["synth", "--config", str(config_file), "--format", "json", "-o", str(output)],
        )
        assert result.exit_code == 0
        assert "Template written to" in result.output
        assert output.read_text().startswith("{")

    def test_invalid_config(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("region: us-west-2\n")
        result = runner.invoke(cli, ["synth", "--config", str(path)])
        assert result.exit_code == 1
        assert "Missing required configuration" in result.output

    def test_missing_config_file(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["synth", "--config", "/nonexistent.yaml"])
        assert result.exit_code == 2


class TestDeploy:
    """Tests for the deploy command."""

    def test_dry_run(self, runner: CliRunner, config_file: Path) -> None:
        result = runner.invoke(cli, ["deploy", "--config", str(config_file), "--dry-run"])
        assert result.exit_code == 0
        assert "Deploying stack: selfhosted-prod" in result.output
        assert "Dry run" in result.output
        assert "Database migration skipped" in result.output

    def test_migration_failure(self, runner: CliRunner, config_file: Path) -> None:
        failure = MigrationFailed(1, log_group="pulumi-migration-logs")
        with patch("ecs_platform.cli.deploy_platform", new=AsyncMock(side_effect=failure)):
            result = runner.invoke(cli, ["deploy", "--config", str(config_file)])
        assert result.exit_code == 1
        assert "Database migration failed" in result.output


class TestMigrate:
    """Tests for the migrate command."""

    ARGS = [
        "migrate",
        "--cluster",
        "pulumi",
        "--task-definition",
        "migration:1",
        "--subnet",
        "subnet-1",
        "--security-group",
        "sg-1",
    ]

    def test_success(self, runner: CliRunner) -> None:
        execution = finished(TaskState.STOPPED, task_arn="arn:aws:ecs:task/abc")
        with patch("ecs_platform.cli.MigrationTaskOrchestrator") as orchestrator_class:
            orchestrator_class.return_value.run_migration.return_value = execution
            result = runner.invoke(cli, self.ARGS + ["--region", "us-west-2"])

        assert result.exit_code == 0
        assert "Task: arn:aws:ecs:task/abc" in result.output
        assert "Migration stopped" in result.output
        orchestrator_class.assert_called_once_with(region="us-west-2")
        kwargs = orchestrator_class.return_value.run_migration.call_args.kwargs
        assert kwargs["placement"] == TaskPlacement("subnet-1", "sg-1")
        assert kwargs["execute"] is True
        assert kwargs["dry_run"] is False

    def test_skip(self, runner: CliRunner) -> None:
        with patch("ecs_platform.cli.MigrationTaskOrchestrator") as orchestrator_class:
            orchestrator_class.return_value.run_migration.return_value = finished(
                TaskState.SKIPPED
            )
            result = runner.invoke(cli, self.ARGS + ["--skip"])

        assert result.exit_code == 0
        assert "Migration skipped" in result.output
        kwargs = orchestrator_class.return_value.run_migration.call_args.kwargs
        assert kwargs["execute"] is False

    def test_conflict(self, runner: CliRunner) -> None:
        with patch("ecs_platform.cli.MigrationTaskOrchestrator") as orchestrator_class:
            orchestrator_class.return_value.run_migration.side_effect = ConflictDetected(
                "pulumi-migration-task", ["arn:aws:ecs:task/other"]
            )
            result = runner.invoke(cli, self.ARGS)

        assert result.exit_code == 1
        assert "already has running tasks" in result.output


class TestStatus:
    """Tests for the status command."""

    def test_ready(self, runner: CliRunner) -> None:
        with (
            patch.object(
                StackManager, "get_stack_status", new=AsyncMock(return_value="CREATE_COMPLETE")
            ),
            patch.object(
                StackManager, "get_outputs", new=AsyncMock(return_value={"clusterName": "pulumi"})
            ),
        ):
            result = runner.invoke(cli, ["status", "--stack-name", "selfhosted-prod"])

        assert result.exit_code == 0
        assert "Status: CREATE_COMPLETE" in result.output
        assert "clusterName: pulumi" in result.output
        assert "Stack is ready" in result.output

    def test_not_found(self, runner: CliRunner) -> None:
        with patch.object(StackManager, "get_stack_status", new=AsyncMock(return_value=None)):
            result = runner.invoke(cli, ["status", "--stack-name", "selfhosted-prod"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_rolled_back(self, runner: CliRunner) -> None:
        with (
            patch.object(
                StackManager, "get_stack_status", new=AsyncMock(return_value="ROLLBACK_COMPLETE")
            ),
            patch.object(StackManager, "get_outputs", new=AsyncMock(return_value={})),
        ):
            result = runner.invoke(cli, ["status", "--stack-name", "selfhosted-prod"])

        assert result.exit_code == 1

    def test_invalid_stack_name(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["status", "--stack-name", "selfhosted_prod"])
        assert result.exit_code == 1
        assert "✗ Failed to get status: Invalid name: 'selfhosted_prod'" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)


class TestDelete:
    """Tests for the delete command."""

    def test_delete_with_yes(self, runner: CliRunner) -> None:
        delete = AsyncMock()
        with patch.object(StackManager, "delete_stack", new=delete):
            result = runner.invoke(cli, ["delete", "--stack-name", "selfhosted-prod", "--yes"])

        assert result.exit_code == 0
        assert "deleted successfully" in result.output
        delete.assert_awaited_once_with(wait=True)

    def test_abort_without_confirmation(self, runner: CliRunner) -> None:
        delete = AsyncMock()
        with patch.object(StackManager, "delete_stack", new=delete):
            result = runner.invoke(cli, ["delete", "--stack-name", "selfhosted-prod"], input="n\n")

        assert result.exit_code == 1
        delete.assert_not_called()

    def test_no_wait(self, runner: CliRunner) -> None:
        with patch.object(StackManager, "delete_stack", new=AsyncMock()):
            result = runner.invoke(
                cli, ["delete", "--stack-name", "selfhosted-prod", "--yes", "--no-wait"]
            )

        assert result.exit_code == 0
        assert "deletion initiated" in result.output

    def test_invalid_stack_name(self, runner: CliRunner) -> None:
        delete = AsyncMock()
        with patch.object(StackManager, "delete_stack", new=delete):
            result = runner.invoke(cli, ["delete", "--stack-name", "selfhosted.prod", "--yes"])

        assert result.exit_code == 1
        assert "✗ Deletion failed: Invalid name" in result.output
        delete.assert_not_called()

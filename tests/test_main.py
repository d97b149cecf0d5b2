"""Tests for the entry points."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from aws_mock import MockAWS
from converge.cli import cli
from converge.config import Config, RenderTargetKind
from converge.main import EXIT_FAILURE, EXIT_FATAL, EXIT_SUCCESS, converge, exit_code
from converge.runner import ConvergenceResult
from converge.task import TaskResult, TaskState

DECLARATIONS = """\
loadBalancers:
  - name: api.k8s.example.com
    loadBalancerName: api-k8s
    subnets: [subnet-a, subnet-b]
targetGroups:
  - name: tcp-443.k8s.example.com
    targetGroupName: tcp-443
    vpcId: vpc-1
    port: 443
listeners:
  - name: api-443
    loadBalancer: api.k8s.example.com
    targetGroup: tcp-443.k8s.example.com
    port: 443
"""


@pytest.fixture
def declarations(tmp_path: Path) -> Path:
    path = tmp_path / "cluster.yaml"
    path.write_text(DECLARATIONS, encoding="utf-8")
    return path


def make_config(declarations: Path, **overrides) -> Config:
    return Config(
        cluster_name="k8s.example.com",
        region="eu-west-1",
        declarations_path=declarations,
        **overrides,
    )


class TestConverge:
    """Tests for one pass driven by a Config."""

    @pytest.mark.asyncio
    async def test_live_success(self, declarations: Path, aws: MockAWS) -> None:
        code = await converge(
            make_config(declarations), cloud=aws.cloud(), install_signal_handlers=False
        )

        assert code == EXIT_SUCCESS
        assert len(aws.listeners.objects) == 1

    @pytest.mark.asyncio
    async def test_terraform_writes_file(
        self, declarations: Path, aws: MockAWS, tmp_path: Path
    ) -> None:
        config = make_config(
            declarations, target=RenderTargetKind.TERRAFORM, output_dir=tmp_path / "tf"
        )

        code = await converge(config, cloud=aws.cloud(), install_signal_handlers=False)

        assert code == EXIT_SUCCESS
        document = json.loads(config.terraform_output_path.read_text(encoding="utf-8"))
        assert set(document["resource"]) == {"aws_lb", "aws_lb_target_group", "aws_lb_listener"}
        assert aws.mutations() == []

    @pytest.mark.asyncio
    async def test_task_failure(self, declarations: Path, aws: MockAWS) -> None:
        aws.load_balancers.fail_on("create")

        code = await converge(
            make_config(declarations), cloud=aws.cloud(), install_signal_handlers=False
        )

        assert code == EXIT_FAILURE

    @pytest.mark.asyncio
    async def test_consistency_error_is_fatal(self, declarations: Path, aws: MockAWS) -> None:
        aws.seed_load_balancer("unrelated", owned=False)
        aws.load_balancers.unrequested_tag_ids = ["arn:aws:elasticloadbalancing:bogus"]

        code = await converge(
            make_config(declarations), cloud=aws.cloud(), install_signal_handlers=False
        )

        assert code == EXIT_FATAL

    @pytest.mark.asyncio
    async def test_invalid_declarations(self, declarations: Path, aws: MockAWS) -> None:
        config = make_config(declarations)
        declarations.write_text("listeners: [broken\n", encoding="utf-8")

        code = await converge(config, cloud=aws.cloud(), install_signal_handlers=False)

        assert code == EXIT_FAILURE
        assert aws.calls == []


class TestExitCode:
    def _result(self, state: TaskState, *, fatal: bool = False) -> ConvergenceResult:
        return ConvergenceResult(
            target="live",
            results={"load-balancer/api": TaskResult(name="api", kind="load-balancer", state=state)},
            fatal=fatal,
        )

    def test_success(self) -> None:
        assert exit_code(self._result(TaskState.NO_OP)) == EXIT_SUCCESS

    def test_failure(self) -> None:
        assert exit_code(self._result(TaskState.FAILED)) == EXIT_FAILURE

    def test_fatal_wins(self) -> None:
        assert exit_code(self._result(TaskState.FAILED, fatal=True)) == EXIT_FATAL


class TestCli:
    """Tests for the click commands that need no cloud access."""

    @pytest.fixture(autouse=True)
    def no_logging_setup(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("converge.cli.setup_logging", lambda level=None: None)

    def test_validate_prints_order(self, declarations: Path) -> None:
        result = CliRunner().invoke(cli, ["validate", "-f", str(declarations)])

        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == [
            "load-balancer/api.k8s.example.com",
            "target-group/tcp-443.k8s.example.com",
            "listener/api-443",
        ]

    def test_validate_reports_errors(self, declarations: Path) -> None:
        declarations.write_text(
            DECLARATIONS.replace("targetGroup: tcp-443.k8s.example.com", "targetGroup: nope"),
            encoding="utf-8",
        )

        result = CliRunner().invoke(cli, ["validate", "-f", str(declarations)])

        assert result.exit_code == 1
        assert "unknown target group" in result.output

    def test_apply_rejects_bad_region(self, declarations: Path) -> None:
        result = CliRunner().invoke(
            cli,
            ["apply", "--cluster", "k8s.example.com", "--region", "mars", "-f", str(declarations)],
        )

        assert result.exit_code == 1
        assert "AWS_REGION" in result.output

"""Tests for the Terraform render target."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from aws_mock import MockAWS
from converge.errors import BackendQueryError
from converge.targets.terraform import Literal, TerraformRenderError, TerraformTarget
from converge.task import ConvergeContext, DeltaKind, Lifecycle, TaskState, run_task
from converge.tags import ownership_tags
from factories import LB_NAME, make_stack

CLUSTER = "k8s.example.com"


@pytest.fixture
def target(tmp_path: Path) -> TerraformTarget:
    return TerraformTarget(tmp_path / "converge.tf.json", "eu-west-1", ownership_tags(CLUSTER))


class TestLiteral:
    """Tests for Literal expressions."""

    def test_reference(self) -> None:
        literal = Literal.reference("aws_lb", "api", "arn")
        assert literal.expression == "${aws_lb.api.arn}"
        assert literal.is_symbolic

    def test_value(self) -> None:
        literal = Literal.from_value("arn:aws:elasticloadbalancing:lb/1")
        assert not literal.is_symbolic


class TestRenderResource:
    """Tests for emitting resource blocks."""

    def test_single_resource_without_references(self, target: TerraformTarget) -> None:
        lb = make_stack().load_balancer

        result = run_task(lb, ConvergeContext(target=target))

        assert result.state is TaskState.RENDERED
        assert list(target.resources) == ["aws_lb"]
        assert list(target.resources["aws_lb"]) == ["api-k8s-example-com"]
        assert target.symbolic_reference_count() == 0

        block = target.to_document()["resource"]["aws_lb"]["api-k8s-example-com"]
        assert block["name"] == "api-k8s"
        assert block["internal"] is False
        assert block["load_balancer_type"] == "network"
        assert block["subnets"] == ["subnet-a", "subnet-b"]
        assert block["tags"]["Name"] == LB_NAME
        assert block["tags"]["KubernetesCluster"] == CLUSTER

    def test_duplicate_block_is_rejected(self, target: TerraformTarget) -> None:
        target.render_resource("aws_lb", "api", {"name": "a"})
        with pytest.raises(TerraformRenderError, match="duplicate"):
            target.render_resource("aws_lb", "api", {"name": "b"})

    def test_none_values_are_omitted(self, target: TerraformTarget) -> None:
        target.render_resource("aws_lb", "api", {"name": "a", "ip_address_type": None})
        assert target.to_document()["resource"]["aws_lb"]["api"] == {"name": "a"}

    def test_provider_sections(self, target: TerraformTarget) -> None:
        document = target.to_document()
        assert document["provider"] == {"aws": {"region": "eu-west-1"}}
        assert document["terraform"]["required_providers"]["aws"]["source"] == "hashicorp/aws"


class TestListenerTerraform:
    """Tests for rendering a listener whose dependencies do not exist yet."""

    def test_dependencies_become_symbolic_references(self, target: TerraformTarget) -> None:
        stack = make_stack(certificate="arn:aws:acm:cert/1")

        result = run_task(stack.listener, ConvergeContext(target=target))

        assert result.state is TaskState.RENDERED
        block = target.resources["aws_lb_listener"]["api-k8s-example-com-443"]
        assert block["load_balancer_arn"] == Literal("${aws_lb.api-k8s-example-com.arn}")
        assert block["default_action"][0]["target_group_arn"] == Literal(
            "${aws_lb_target_group.tcp-443-k8s-example-com.arn}"
        )
        assert block["protocol"] == "TLS"
        assert block["certificate_arn"] == "arn:aws:acm:cert/1"
        assert block["ssl_policy"] == "ELBSecurityPolicy-2016-08"
        assert target.symbolic_reference_count() == 2

    def test_existing_load_balancer_is_referenced_by_identifier(
        self, target: TerraformTarget
    ) -> None:
        stack = make_stack(lb_lifecycle=Lifecycle.EXISTS_AND_IMMUTABLE)
        stack.load_balancer.ref.set("arn:aws:elasticloadbalancing:lb/existing")

        run_task(stack.listener, ConvergeContext(target=target))

        block = target.resources["aws_lb_listener"]["api-k8s-example-com-443"]
        assert block["load_balancer_arn"] == Literal("arn:aws:elasticloadbalancing:lb/existing")
        assert target.symbolic_reference_count() == 1

    def test_listener_without_load_balancer_fails(self, target: TerraformTarget) -> None:
        listener = make_stack().listener
        listener.load_balancer = None

        result = run_task(listener, ConvergeContext(target=target))

        assert result.state is TaskState.FAILED
        assert target.resources == {}


class TestExistingResources:
    """Tests for rendering against a backend that already holds resources."""

    def test_identical_resource_renders_nothing(self, target: TerraformTarget, aws: MockAWS) -> None:
        arn = aws.seed_load_balancer(LB_NAME, subnets=("subnet-a", "subnet-b"))
        lb = make_stack().load_balancer

        result = run_task(lb, ConvergeContext(target=target, cloud=aws.cloud()))

        assert result.state is TaskState.NO_OP
        assert result.delta is DeltaKind.NO_OP
        assert target.resources == {}
        assert lb.ref.value == arn
        assert aws.mutations() == []

    def test_dependents_reference_unrendered_resource_by_identifier(
        self, target: TerraformTarget, aws: MockAWS
    ) -> None:
        lb_arn = aws.seed_load_balancer(LB_NAME, subnets=("subnet-a", "subnet-b"))
        context = ConvergeContext(target=target, cloud=aws.cloud())

        results = [run_task(task, context) for task in make_stack().tasks]

        assert [r.state for r in results] == [
            TaskState.NO_OP,
            TaskState.RENDERED,
            TaskState.RENDERED,
        ]
        assert "aws_lb" not in target.resources
        block = target.resources["aws_lb_listener"]["api-k8s-example-com-443"]
        assert block["load_balancer_arn"] == Literal(lb_arn)
        assert block["default_action"][0]["target_group_arn"] == Literal(
            "${aws_lb_target_group.tcp-443-k8s-example-com.arn}"
        )
        assert target.symbolic_reference_count() == 1
        assert aws.mutations() == []

    def test_drifted_resource_is_rendered_and_linked_symbolically(
        self, target: TerraformTarget, aws: MockAWS
    ) -> None:
        aws.seed_load_balancer(LB_NAME, subnets=("subnet-c",))
        context = ConvergeContext(target=target, cloud=aws.cloud())

        results = [run_task(task, context) for task in make_stack().tasks]

        assert results[0].delta is DeltaKind.UPDATE
        block = target.resources["aws_lb_listener"]["api-k8s-example-com-443"]
        assert block["load_balancer_arn"] == Literal("${aws_lb.api-k8s-example-com.arn}")
        assert target.symbolic_reference_count() == 2

    def test_failed_lookup_renders_as_absent(self, target: TerraformTarget, aws: MockAWS) -> None:
        aws.seed_load_balancer(LB_NAME, subnets=("subnet-a", "subnet-b"))
        aws.load_balancers.fail_on("list")

        result = run_task(make_stack().load_balancer, ConvergeContext(target=target, cloud=aws.cloud()))

        assert result.state is TaskState.RENDERED
        assert result.delta is DeltaKind.CREATE
        assert list(target.resources["aws_lb"]) == ["api-k8s-example-com"]

    def test_exists_and_immutable_lookup_stays_strict(
        self, target: TerraformTarget, aws: MockAWS
    ) -> None:
        aws.load_balancers.fail_on("list")
        lb = make_stack(lb_lifecycle=Lifecycle.EXISTS_AND_IMMUTABLE).load_balancer

        result = run_task(lb, ConvergeContext(target=target, cloud=aws.cloud()))

        assert result.state is TaskState.FAILED
        assert isinstance(result.error, BackendQueryError)


class TestFinish:
    """Tests for writing the output file."""

    def test_writes_json_on_success(self, target: TerraformTarget) -> None:
        for task in make_stack().tasks:
            run_task(task, ConvergeContext(target=target))

        target.finish(success=True)

        document = json.loads(target.output_path.read_text(encoding="utf-8"))
        assert set(document["resource"]) == {"aws_lb", "aws_lb_target_group", "aws_lb_listener"}
        listener = document["resource"]["aws_lb_listener"]["api-k8s-example-com-443"]
        assert listener["load_balancer_arn"] == "${aws_lb.api-k8s-example-com.arn}"
        assert "certificate_arn" not in listener

    def test_nothing_written_on_failure(self, target: TerraformTarget) -> None:
        run_task(make_stack().load_balancer, ConvergeContext(target=target))

        target.finish(success=False)

        assert not target.output_path.exists()

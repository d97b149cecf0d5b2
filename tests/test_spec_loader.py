"""Tests for declarations loading and task construction."""

from __future__ import annotations

from pathlib import Path

import pytest

from converge.awstasks import LoadBalancer, LoadBalancerListener, TargetGroup
from converge.spec_loader import SpecLoadError, load_declarations
from converge.task import Lifecycle

VALID_DECLARATIONS = """\
loadBalancers:
  - name: api.k8s.example.com
    loadBalancerName: api-k8s
    scheme: internal
    subnets: [subnet-a, subnet-b]
    tags:
      team: platform
targetGroups:
  - name: tcp-443.k8s.example.com
    targetGroupName: tcp-443
    vpcId: vpc-1
    port: 443
    healthCheck:
      intervalSeconds: 10
listeners:
  - name: api-443
    loadBalancer: api.k8s.example.com
    targetGroup: tcp-443.k8s.example.com
    port: 443
    sslCertificateId: arn:aws:acm:eu-west-1:123456789012:certificate/abc
"""


def write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "cluster.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadDeclarations:
    """Tests for load_declarations."""

    def test_builds_linked_tasks(self, tmp_path: Path) -> None:
        tasks = load_declarations(write(tmp_path, VALID_DECLARATIONS))

        lb, tg, listener = tasks
        assert isinstance(lb, LoadBalancer)
        assert lb.scheme == "internal"
        assert lb.tags == {"team": "platform"}
        assert isinstance(tg, TargetGroup)
        assert tg.health_check_interval == 10
        assert tg.healthy_threshold is None
        assert isinstance(listener, LoadBalancerListener)
        assert listener.load_balancer is lb
        assert listener.target_group is tg
        assert listener.lifecycle is Lifecycle.CREATE_OR_UPDATE

    def test_kubernetes_style_wrapper(self, tmp_path: Path) -> None:
        indented = "\n".join(f"  {line}" for line in VALID_DECLARATIONS.splitlines())
        content = f"apiVersion: converge/v1\nkind: Cluster\nspec:\n{indented}\n"

        tasks = load_declarations(write(tmp_path, content))

        assert len(tasks) == 3

    def test_lifecycle(self, tmp_path: Path) -> None:
        content = VALID_DECLARATIONS.replace(
            "    scheme: internal\n", "    scheme: internal\n    lifecycle: exists-and-immutable\n"
        )

        lb = load_declarations(write(tmp_path, content))[0]

        assert lb.lifecycle is Lifecycle.EXISTS_AND_IMMUTABLE

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="not found"):
            load_declarations(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="Invalid YAML"):
            load_declarations(write(tmp_path, "loadBalancers: [unclosed\n"))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="mapping"):
            load_declarations(write(tmp_path, "- just\n- a list\n"))

    def test_validation_errors_are_readable(self, tmp_path: Path) -> None:
        content = VALID_DECLARATIONS.replace("    port: 443\n    healthCheck", "    port: 70000\n    healthCheck")

        with pytest.raises(SpecLoadError) as exc_info:
            load_declarations(write(tmp_path, content))

        message = str(exc_info.value)
        assert "Validation failed" in message
        assert "targetGroups.0.port" in message

    def test_load_balancer_name_length(self, tmp_path: Path) -> None:
        content = VALID_DECLARATIONS.replace("api-k8s", "a" * 33)

        with pytest.raises(SpecLoadError, match="loadBalancerName"):
            load_declarations(write(tmp_path, content))

    def test_duplicate_names(self, tmp_path: Path) -> None:
        content = VALID_DECLARATIONS.replace(
            "listeners:\n",
            "  - name: tcp-443.k8s.example.com\n    targetGroupName: other\n    port: 80\n"
            "listeners:\n",
        )

        with pytest.raises(SpecLoadError, match="Duplicate target group names"):
            load_declarations(write(tmp_path, content))

    def test_unknown_reference(self, tmp_path: Path) -> None:
        content = VALID_DECLARATIONS.replace(
            "targetGroup: tcp-443.k8s.example.com", "targetGroup: nope"
        )

        with pytest.raises(SpecLoadError, match="unknown target group 'nope'"):
            load_declarations(write(tmp_path, content))

    def test_size_limit(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("converge.spec_loader.MAX_DECLARATIONS_FILE_SIZE_BYTES", 10)

        with pytest.raises(SpecLoadError, match="exceeds maximum size"):
            load_declarations(write(tmp_path, VALID_DECLARATIONS))

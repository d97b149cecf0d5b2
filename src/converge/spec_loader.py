"""Declarations file loading and task graph construction.

SECURITY: The file size is checked before reading. Input validation is
performed at the boundary; nothing downstream re-validates declared values.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .awstasks import LoadBalancer, LoadBalancerListener, TargetGroup
from .config import MAX_DECLARATIONS_FILE_SIZE_BYTES
from .models import DeclarationsSpec
from .task import Task

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when declarations loading or validation fails."""

    pass


def load_declarations_spec(path: Path) -> DeclarationsSpec:
    """Load and validate a declarations file.

    Both a flat document and a Kubernetes-style ``apiVersion/kind/spec``
    wrapper are accepted.

    Raises:
        SpecLoadError: If the file cannot be read or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Declarations file not found: {path}")

    # SECURITY: Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat declarations file {path}: {e}") from e

    if file_size > MAX_DECLARATIONS_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Declarations file exceeds maximum size of "
            f"{MAX_DECLARATIONS_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read declarations file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Declarations file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec") or {}
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
    else:
        spec_data = raw_data

    try:
        spec = DeclarationsSpec.model_validate(spec_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e

    return spec


def _check_unique(kind: str, names: list[str]) -> None:
    seen: set[str] = set()
    duplicates: set[str] = set()
    for name in names:
        if name in seen:
            duplicates.add(name)
        seen.add(name)
    if duplicates:
        raise SpecLoadError(f"Duplicate {kind} names: {sorted(duplicates)}")


def build_tasks(spec: DeclarationsSpec) -> list[Task]:
    """Turn validated declarations into a linked task set.

    Raises:
        SpecLoadError: On duplicate names or references to undeclared resources.
    """
    _check_unique("load balancer", [lb.name for lb in spec.load_balancers])
    _check_unique("target group", [tg.name for tg in spec.target_groups])
    _check_unique("listener", [ln.name for ln in spec.listeners])

    load_balancers = {
        lb.name: LoadBalancer(
            name=lb.name,
            lifecycle=lb.lifecycle,
            load_balancer_name=lb.load_balancer_name,
            scheme=lb.scheme,
            subnets=list(lb.subnets),
            tags=dict(lb.tags),
        )
        for lb in spec.load_balancers
    }

    target_groups = {
        tg.name: TargetGroup(
            name=tg.name,
            lifecycle=tg.lifecycle,
            target_group_name=tg.target_group_name,
            vpc_id=tg.vpc_id,
            port=tg.port,
            protocol=tg.protocol,
            health_check_interval=tg.health_check.interval_seconds,
            healthy_threshold=tg.health_check.healthy_threshold,
            unhealthy_threshold=tg.health_check.unhealthy_threshold,
            tags=dict(tg.tags),
        )
        for tg in spec.target_groups
    }

    listeners: list[LoadBalancerListener] = []
    for ln in spec.listeners:
        if ln.load_balancer not in load_balancers:
            raise SpecLoadError(
                f"Listener {ln.name!r} references unknown load balancer {ln.load_balancer!r}"
            )
        if ln.target_group not in target_groups:
            raise SpecLoadError(
                f"Listener {ln.name!r} references unknown target group {ln.target_group!r}"
            )
        listeners.append(
            LoadBalancerListener(
                name=ln.name,
                lifecycle=ln.lifecycle,
                load_balancer=load_balancers[ln.load_balancer],
                port=ln.port,
                target_group=target_groups[ln.target_group],
                ssl_certificate_id=ln.ssl_certificate_id,
                ssl_policy=ln.ssl_policy,
            )
        )

    return [*load_balancers.values(), *target_groups.values(), *listeners]


def load_declarations(path: Path) -> list[Task]:
    """Load a declarations file and build its task set.

    Raises:
        SpecLoadError: If the file is invalid or its references do not resolve.
    """
    tasks = build_tasks(load_declarations_spec(path))
    logger.info(
        "Loaded declarations",
        extra={"path": str(path), "task_count": len(tasks)},
    )
    return tasks

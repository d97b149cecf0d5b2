"""Configuration management with validation.

Constraints are enforced at configuration load time so that a bad
environment fails before any cloud call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .tags import ownership_tags


class RenderTargetKind(str, Enum):
    """Supported render targets."""

    LIVE = "live"
    TERRAFORM = "terraform"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# ELBV2 DescribeTags accepts at most 20 resource ARNs per call
MAX_TAG_BATCH_LIMIT = 20
DEFAULT_TAG_BATCH_LIMIT = MAX_TAG_BATCH_LIMIT

DEFAULT_MAX_CONCURRENCY = 1
MAX_CONCURRENCY = 16

MAX_DECLARATIONS_FILE_SIZE_BYTES = 1024 * 1024

TERRAFORM_OUTPUT_FILENAME = "converge.tf.json"

# Cluster names are DNS-like and end up in tag keys
VALID_CLUSTER_NAME_PATTERN = r"^[a-z0-9]([a-z0-9.-]{0,251}[a-z0-9])?$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"


@dataclass(frozen=True)
class Config:
    """Engine configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-pass.
    """

    cluster_name: str
    region: str
    declarations_path: Path

    target: RenderTargetKind = RenderTargetKind.LIVE
    output_dir: Path = field(default_factory=lambda: Path("out/terraform"))

    tag_batch_limit: int = DEFAULT_TAG_BATCH_LIMIT
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.cluster_name:
            errors.append("CLUSTER_NAME is required")
        elif not re.match(VALID_CLUSTER_NAME_PATTERN, self.cluster_name):
            errors.append(f"CLUSTER_NAME must be a DNS-style name: {self.cluster_name}")

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        if not self.declarations_path.is_file():
            errors.append(f"Declarations file does not exist: {self.declarations_path}")

        if not 1 <= self.tag_batch_limit <= MAX_TAG_BATCH_LIMIT:
            errors.append(f"TAG_BATCH_LIMIT must be between 1 and {MAX_TAG_BATCH_LIMIT}")

        if not 1 <= self.max_concurrency <= MAX_CONCURRENCY:
            errors.append(f"MAX_CONCURRENCY must be between 1 and {MAX_CONCURRENCY}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def ownership_tags(self) -> dict[str, str]:
        """Tags every managed resource carries for this cluster."""
        return ownership_tags(self.cluster_name)

    @property
    def terraform_output_path(self) -> Path:
        return self.output_dir / TERRAFORM_OUTPUT_FILENAME

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            CLUSTER_NAME: Logical cluster the managed resources belong to
            AWS_REGION: Region of the ELBv2 backend
            DECLARATIONS_FILE: YAML file with declared resources
            RENDER_TARGET: "live" or "terraform" (default: live)
            OUTPUT_DIR: Terraform output directory (default: out/terraform)
            TAG_BATCH_LIMIT: ARNs per tag lookup, 1-20 (default: 20)
            MAX_CONCURRENCY: Parallel independent tasks, 1-16 (default: 1)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_target(value: str | None) -> RenderTargetKind:
            if not value:
                return RenderTargetKind.LIVE
            try:
                return RenderTargetKind(value.lower())
            except ValueError as e:
                valid = [t.value for t in RenderTargetKind]
                raise ConfigurationError(f"RENDER_TARGET must be one of {valid}: {value}") from e

        return cls(
            cluster_name=os.environ.get("CLUSTER_NAME", ""),
            region=os.environ.get("AWS_REGION", ""),
            declarations_path=Path(os.environ.get("DECLARATIONS_FILE", "cluster.yaml")),
            target=get_target(os.environ.get("RENDER_TARGET")),
            output_dir=Path(os.environ.get("OUTPUT_DIR", "out/terraform")),
            tag_batch_limit=get_int("TAG_BATCH_LIMIT", DEFAULT_TAG_BATCH_LIMIT),
            max_concurrency=get_int("MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
        )

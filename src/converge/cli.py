"""Converge CLI.

Usage:
    converge apply --cluster k8s.example.com --region eu-west-1 -f cluster.yaml
    converge apply --target terraform --output-dir out/terraform -f cluster.yaml
    converge validate -f cluster.yaml
    converge status --cluster k8s.example.com --region eu-west-1

Every option of ``apply`` falls back to the environment variable the
env-driven entry point reads.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from .cloud import AWSCloud
from .config import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_TAG_BATCH_LIMIT,
    Config,
    ConfigurationError,
    RenderTargetKind,
)
from .errors import ConvergeError, CyclicDependencyError
from .main import converge, setup_logging
from .runner import DependencyGraph, task_key
from .spec_loader import SpecLoadError, load_declarations
from .status import CloudStatusStore, to_json_dict
from .tags import ownership_tags


@click.group()
@click.version_option(version="0.1.0", prog_name="converge")
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
def cli(verbose: bool) -> None:
    """Converge declared load balancer resources against AWS or Terraform.

    \b
    Quick Start:
        converge validate -f cluster.yaml    # Check declarations offline
        converge apply -f cluster.yaml       # Converge against the live API
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)


@cli.command()
@click.option("--cluster", "-c", envvar="CLUSTER_NAME", required=True, help="Cluster name")
@click.option("--region", "-r", envvar="AWS_REGION", required=True, help="AWS region")
@click.option(
    "--declarations",
    "-f",
    envvar="DECLARATIONS_FILE",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default="cluster.yaml",
    help="Declarations file",
)
@click.option(
    "--target",
    "-t",
    envvar="RENDER_TARGET",
    type=click.Choice([t.value for t in RenderTargetKind]),
    default=RenderTargetKind.LIVE.value,
    help="Render target",
)
@click.option(
    "--output-dir",
    envvar="OUTPUT_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    default="out/terraform",
    help="Terraform output directory",
)
@click.option(
    "--max-concurrency",
    envvar="MAX_CONCURRENCY",
    type=int,
    default=DEFAULT_MAX_CONCURRENCY,
    help="Independent tasks run at once",
)
@click.option(
    "--tag-batch-limit",
    envvar="TAG_BATCH_LIMIT",
    type=int,
    default=DEFAULT_TAG_BATCH_LIMIT,
    help="Resource ARNs per tag lookup",
)
def apply(
    cluster: str,
    region: str,
    declarations: Path,
    target: str,
    output_dir: Path,
    max_concurrency: int,
    tag_batch_limit: int,
) -> None:
    """Run one convergence pass.

    Exits 1 if any task failed and 2 on a fatal consistency error.
    """
    try:
        config = Config(
            cluster_name=cluster,
            region=region,
            declarations_path=declarations,
            target=RenderTargetKind(target),
            output_dir=output_dir,
            tag_batch_limit=tag_batch_limit,
            max_concurrency=max_concurrency,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    sys.exit(asyncio.run(converge(config)))


@cli.command()
@click.option(
    "--declarations",
    "-f",
    envvar="DECLARATIONS_FILE",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default="cluster.yaml",
    help="Declarations file",
)
def validate(declarations: Path) -> None:
    """Validate declarations and print the convergence order."""
    try:
        tasks = load_declarations(declarations)
        order = DependencyGraph.from_tasks(tasks).topological_sort()
    except (SpecLoadError, CyclicDependencyError) as e:
        raise click.ClickException(str(e)) from e

    for task in order:
        click.echo(task_key(task))


@cli.command()
@click.option("--cluster", "-c", envvar="CLUSTER_NAME", required=True, help="Cluster name")
@click.option("--region", "-r", envvar="AWS_REGION", required=True, help="AWS region")
def status(cluster: str, region: str) -> None:
    """Print etcd and API ingress status discovered from the cloud."""
    store = CloudStatusStore(AWSCloud.from_session(region, ownership_tags(cluster)))

    try:
        cluster_status = store.find_cluster_status(cluster)
        ingress = store.get_api_ingress_status(cluster)
    except ConvergeError as e:
        raise click.ClickException(str(e)) from e

    document = {
        "cluster": to_json_dict(cluster_status),
        "apiIngress": [to_json_dict(i) for i in ingress],
    }
    click.echo(json.dumps(document, indent=2))


if __name__ == "__main__":
    cli()

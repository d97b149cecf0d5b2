"""Main entry point: one convergence pass driven by environment variables.

Exit codes:
    0: every task converged
    1: configuration, declaration or task failure
    2: fatal internal consistency error, the backend state must be inspected
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from .cloud import AWSCloud
from .config import Config, ConfigurationError, RenderTargetKind
from .errors import CyclicDependencyError
from .runner import ConvergenceResult, TaskRunner
from .spec_loader import SpecLoadError, load_declarations
from .targets.base import RenderTarget
from .targets.live import LiveTarget
from .targets.terraform import TerraformTarget
from .task import ConvergeContext

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_FATAL = 2

# LogRecord attributes that are not structured extra fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_target(config: Config, cloud: AWSCloud | None) -> RenderTarget:
    """Select the render target for the run."""
    if config.target is RenderTargetKind.TERRAFORM:
        return TerraformTarget(config.terraform_output_path, config.region, config.ownership_tags())
    if cloud is None:
        raise ConfigurationError("the live target requires a cloud backend")
    return LiveTarget(cloud)


def exit_code(result: ConvergenceResult) -> int:
    if result.fatal:
        return EXIT_FATAL
    return EXIT_SUCCESS if result.success else EXIT_FAILURE


async def converge(
    config: Config,
    *,
    cloud: AWSCloud | None = None,
    install_signal_handlers: bool = True,
) -> int:
    """Run one convergence pass and return the process exit code.

    Args:
        config: Validated configuration.
        cloud: Backend capabilities; built from the default boto3 session when
            omitted.
        install_signal_handlers: Stop the pass at the next task boundary on
            SIGTERM/SIGINT.
    """
    logger = logging.getLogger(__name__)

    try:
        tasks = load_declarations(config.declarations_path)
    except SpecLoadError as e:
        logger.error(
            "Failed to load declarations",
            extra={"error": str(e), "path": str(config.declarations_path)},
        )
        return EXIT_FAILURE

    # The terraform target also looks up live resources to skip existing ones
    if cloud is None:
        cloud = AWSCloud.from_session(config.region, config.ownership_tags())

    target = build_target(config, cloud)
    context = ConvergeContext(target=target, cloud=cloud, tag_batch_limit=config.tag_batch_limit)

    try:
        runner = TaskRunner(tasks, context, max_concurrency=config.max_concurrency)
    except Exception as e:
        logger.error(
            "Failed to build task graph",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return EXIT_FAILURE

    loop = asyncio.get_running_loop()
    signals = (signal.SIGTERM, signal.SIGINT) if install_signal_handlers else ()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        runner.shutdown()

    for sig in signals:
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        result = await runner.run()
    except CyclicDependencyError as e:
        logger.error("Declared resources form a cycle", extra={"error": str(e)})
        return EXIT_FAILURE
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)

    for key, error in sorted(result.errors.items()):
        logger.error(
            "Task did not converge",
            extra={
                "task": key,
                "state": result.results[key].state.value,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )

    if result.fatal:
        logger.critical(
            "Convergence pass aborted by an internal consistency error",
            extra={"cluster": config.cluster_name},
        )

    return exit_code(result)


async def main() -> int:
    """Run the engine from environment configuration.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_FAILURE

    logger.info(
        "Starting convergence",
        extra={
            "cluster": config.cluster_name,
            "region": config.region,
            "target": config.target.value,
            "declarations": str(config.declarations_path),
        },
    )

    try:
        return await converge(config)
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return EXIT_FAILURE


def run() -> None:
    """Entry point for the environment-driven engine."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()

# src/bucketsync/cli.py
"""Command-line interface for the bucketsync tool."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from bucketsync.checkpoint import CheckpointStore
from bucketsync.config import AppConfig, Config
from bucketsync.exceptions import BucketSyncError
from bucketsync.pipeline import SyncPipeline, SyncSummary, VerifyReport
from bucketsync.progress import RichProgressSink
from bucketsync.signals import GracefulShutdown
from bucketsync.store import open_stores
from bucketsync.transfer import TransferExecutor, TransferResult

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")
Action = Callable[[SyncPipeline], Awaitable[T]]


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


async def main_async(config: Config, action: "Action[T]") -> T:
    """
    Builds the run's clients and pipeline, then executes `action` on it.

    Args:
        config (Config): The application configuration.
        action (Callable): Coroutine function receiving the pipeline.

    Returns:
        The action's result.
    """
    async with GracefulShutdown() as shutdown_event:
        async with open_stores(config) as (source, destination):
            with RichProgressSink() as sink:
                executor: TransferExecutor = TransferExecutor(
                    source,
                    destination,
                    sink=sink,
                    progress_interval_s=config.app.progress_interval_s,
                    timeout_floor_s=config.app.timeout_floor_s,
                    timeout_step_bytes=config.app.timeout_step_bytes,
                    timeout_step_s=config.app.timeout_step_s,
                )
                pipeline: SyncPipeline = SyncPipeline(
                    source,
                    destination,
                    CheckpointStore(config.app.checkpoint_dir),
                    executor=executor,
                    shutdown_event=shutdown_event,
                    concurrency=config.app.concurrency,
                )
                return await action(pipeline)


def _execute(app_config: AppConfig, action: "Action[T]") -> T:
    """Runs an action, mapping application errors to exit status 1."""
    try:
        config: Config = Config(app=app_config)
        return asyncio.run(main_async(config, action))
    except BucketSyncError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)


def _log_summary(summary: SyncSummary) -> None:
    logger.info("Sync completed.")
    logger.info(f"Synced: {summary.synced}")
    logger.info(f"Skipped: {summary.skipped}")
    if summary.failed:
        logger.error(f"Failed: {summary.failed}")
    if summary.checkpoint_preserved:
        logger.warning("Checkpoint preserved. Rerun to resume.")


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--checkpoint-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=".sync",
    help="Directory holding the resume snapshot and journal.",
    show_default=True,
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=1,
    help="Number of objects transferred at once.",
    show_default=True,
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, **kwargs: Any) -> None:
    """
    Mirror a source bucket into a destination bucket.

    Objects missing from the destination, or present with a different size,
    are streamed across. Progress is checkpointed so an interrupted sync
    resumes without listing or copying completed objects again.

    Credentials and bucket names are read from BUCKETSYNC_SOURCE_* and
    BUCKETSYNC_DESTINATION_* environment variables (a .env file is honored).
    """
    load_dotenv()
    setup_logging(kwargs["log_level"])
    ctx.obj = AppConfig(
        checkpoint_dir=kwargs["checkpoint_dir"],
        concurrency=kwargs["concurrency"],
    )


@cli.command()
@click.argument("name", required=False)
@click.pass_obj
def sync(app_config: AppConfig, name: Optional[str]) -> None:
    """Sync every object, or only NAME when given."""

    async def action(pipeline: SyncPipeline) -> SyncSummary:
        if name:
            return await pipeline.sync_object(name)
        return await pipeline.run()

    _log_summary(_execute(app_config, action))


@cli.command()
@click.pass_obj
def verify(app_config: AppConfig) -> None:
    """Compare both buckets and report differences."""

    async def action(pipeline: SyncPipeline) -> VerifyReport:
        return await pipeline.verify()

    _execute(app_config, action)


@cli.command(name="all")
@click.pass_obj
def sync_and_verify(app_config: AppConfig) -> None:
    """Sync every object, then verify."""

    async def action(pipeline: SyncPipeline) -> VerifyReport:
        _log_summary(await pipeline.run())
        logger.info("---")
        return await pipeline.verify()

    _execute(app_config, action)


@cli.command()
@click.argument("name")
@click.pass_obj
def copyback(app_config: AppConfig, name: str) -> None:
    """Copy NAME from the destination back to the source."""

    async def action(pipeline: SyncPipeline) -> TransferResult:
        return await pipeline.copyback(name)

    _execute(app_config, action)
    logger.info(f"Successfully copied '{name}' back to the source.")


@cli.group()
def checkpoint() -> None:
    """Inspect or discard the resume checkpoint."""


@checkpoint.command()
@click.pass_obj
def status(app_config: AppConfig) -> None:
    """Show whether a checkpoint exists and how old it is."""
    store: CheckpointStore = CheckpointStore(app_config.checkpoint_dir)
    if not store.has_checkpoint():
        logger.info(f"No checkpoint in '{app_config.checkpoint_dir}'.")
        return
    logger.info(
        f"Checkpoint in '{app_config.checkpoint_dir}': "
        f"{store.age().total_seconds():.0f}s old, "
        f"{store.journal_length()} journaled objects."
    )


@checkpoint.command()
@click.pass_obj
def clear(app_config: AppConfig) -> None:
    """Delete the checkpoint so the next sync lists both buckets again."""
    CheckpointStore(app_config.checkpoint_dir).clear()
    logger.info("Checkpoint cleared.")


if __name__ == "__main__":
    cli()

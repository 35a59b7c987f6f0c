"""Command-line interface for the Scalebit controller."""

from __future__ import annotations

import asyncio
import functools
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.logging import LogLevel, configure_logging
from structlog.stdlib import get_logger

from .config import Config
from .constants import CONFIG_FILE_ENV_VAR, CONFIGURATION_PATH, ROOT_LOGGER
from .exceptions import (
    InvariantViolationError,
    OwnershipConflictError,
    StoreError,
)
from .factory import Factory
from .models.domain.resource import ObjectKey

__all__ = ["main"]


def _common[**P, R](
    func: Callable[P, Awaitable[R]],
) -> Callable[P, R]:
    """Add the options shared by every command and run it under asyncio."""

    @click.option(
        "--debug",
        "-d",
        is_flag=True,
        help="Enable debug logging",
    )
    @click.option(
        "--config-file",
        "-c",
        help="Controller configuration file",
        type=click.Path(path_type=Path, exists=True, dir_okay=False),
        envvar=CONFIG_FILE_ENV_VAR,
        default=CONFIGURATION_PATH,
        show_default=True,
    )
    @run_with_asyncio
    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return await func(*args, **kwargs)

    return wrapper


def _load_config(config_file: Path, *, debug: bool) -> Config:
    """Load the configuration and configure logging to match."""
    config = Config.from_file(config_file)
    if debug:
        config.log_level = LogLevel.DEBUG
    configure_logging(
        name=ROOT_LOGGER,
        profile=config.profile,
        log_level=config.log_level,
    )
    return config


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Scalebit microservice controller command-line interface."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command
@_common
async def run(*, config_file: Path, debug: bool) -> None:
    """Run the controller until interrupted."""
    config = _load_config(config_file, debug=debug)
    logger = get_logger(ROOT_LOGGER)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    async with Factory.standalone(config) as factory:
        await factory.start_background_services()
        logger.info("Controller started", workers=config.workers)
        await stop.wait()
        logger.info("Shutting down controller")
    logger.info("Controller stopped")


@main.command
@click.argument("namespace")
@click.argument("name")
@_common
async def reconcile(
    *, namespace: str, name: str, config_file: Path, debug: bool
) -> None:
    """Reconcile a single microservice once."""
    config = _load_config(config_file, debug=debug)
    key = ObjectKey(namespace=namespace, name=name)
    async with Factory.standalone(config) as factory:
        reconciler = factory.create_reconciler()
        try:
            result = await reconciler.reconcile(key)
        except (
            InvariantViolationError,
            OwnershipConflictError,
            StoreError,
        ) as e:
            raise click.ClickException(str(e)) from e
    if result.changed:
        click.echo(f"Reconciled {key}")
    else:
        click.echo(f"{key} already converged")
    if result.requeue_after:
        delay = result.requeue_after.total_seconds()
        click.echo(f"Not all replicas are ready, check again in {delay}s")


@main.command
@_common
async def collect(*, config_file: Path, debug: bool) -> None:
    """Delete managed resources whose microservice no longer exists."""
    config = _load_config(config_file, debug=debug)
    async with Factory.standalone(config) as factory:
        collector = factory.create_collector()
        deleted = await collector.collect()
    click.echo(f"Deleted {deleted} orphaned resources")

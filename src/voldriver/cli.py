"""Command-line interface for the volume provisioner."""

import asyncio
import functools
import os
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.kubernetes import initialize_kubernetes
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import get_logger

from .config import Config
from .constants import (
    ALERT_HOOK_ENV_VAR,
    CONFIG_FILE,
    CONFIG_FILE_ENV_VAR,
    ROOT_LOGGER,
)
from .factory import ProcessContext
from .storage.plugin import VolumePluginClient

__all__ = ["main"]


def _common[**P, R](
    func: Callable[P, Awaitable[R]],
) -> Callable[P, R]:
    """Add common Click options and error reporting to a command."""

    @click.option(
        "--debug",
        "-d",
        is_flag=True,
        help="Enable debug logging",
    )
    @click.option(
        "--config-file",
        "-c",
        help="Application configuration file",
        type=Path,
        default=CONFIG_FILE,
    )
    @run_with_asyncio
    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        # Failures of any command are reported to Slack if configured.
        logger = get_logger(ROOT_LOGGER)
        if alert_hook := os.environ.get(ALERT_HOOK_ENV_VAR, None):
            slack_client = SlackWebhookClient(
                alert_hook,
                "voldriver",
                logger=logger,
            )
        else:
            slack_client = None

        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            if slack_client:
                if isinstance(exc, SlackException):
                    await slack_client.post_exception(exc)
                else:
                    await slack_client.post_uncaught_exception(exc)
            raise

    return wrapper


def _load_config(config_file: Path, *, debug: bool) -> Config:
    """Load the configuration and set up logging."""
    # The environment overrides the command line.
    if env_config_path := os.getenv(CONFIG_FILE_ENV_VAR):
        config_file = Path(env_config_path)

    # Without a file, everything comes from the environment.
    if config_file.exists():
        config = Config.from_file(config_file)
    else:
        config = Config()

    if debug:
        config.debug = debug
    config.configure_logging()
    return config


async def _connect(config: Config) -> VolumePluginClient:
    """Connect to the plugin, failing if it does not answer."""
    logger = get_logger(ROOT_LOGGER)
    plugin, error = await VolumePluginClient.connect(config.plugin, logger)
    if error:
        await plugin.aclose()
        raise error
    return plugin


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(
    package_name="voldriver-provisioner", message="%(version)s"
)
def main() -> None:
    """Kubernetes volume provisioner command-line interface."""


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
    """Provision volumes for claims until interrupted."""
    config = _load_config(config_file, debug=debug)
    logger = get_logger(ROOT_LOGGER)
    await initialize_kubernetes()
    context = await ProcessContext.from_config(config)

    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopped.set)

    try:
        await context.start()
        logger.info("Provisioner running", prefix=config.name)
        await stopped.wait()
        logger.info("Shutting down")
    finally:
        await context.stop()
        await context.aclose()


@main.command
@_common
async def volumes(*, config_file: Path, debug: bool) -> None:
    """List the volumes known to the plugin."""
    config = _load_config(config_file, debug=debug)
    plugin = await _connect(config)
    try:
        for volume in await plugin.list():
            click.echo(f"{volume.name}\t{volume.mountpoint or '-'}")
    finally:
        await plugin.aclose()


@main.command
@_common
async def plugin(*, config_file: Path, debug: bool) -> None:
    """Show what the plugin implements and its capabilities."""
    config = _load_config(config_file, debug=debug)
    client = await _connect(config)
    try:
        implements = await client.activate()
        capabilities = await client.capabilities()
    finally:
        await client.aclose()
    click.echo(f"Implements: {', '.join(implements)}")
    click.echo(f"Scope: {capabilities.scope}")

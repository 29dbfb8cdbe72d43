"""CLI for podrefresh."""

import functools
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.sentry import initialize_sentry, report_exception
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import get_logger

from . import __version__
from .config import Config
from .constants import (
    ALERT_HOOK_ENV_VAR,
    CONFIG_FILE,
    CONFIG_FILE_ENV_VAR,
    ROOT_LOGGER,
)
from .factory import Factory

__all__ = ["main", "main_with_sentry"]


def _common[R](
    func: Callable[[Config, SlackWebhookClient | None], Awaitable[R]],
) -> Callable[..., R]:
    """Add common Click options, configuration and error reporting to a
    command.
    """

    @click.option(
        "--debug",
        "-d",
        is_flag=True,
        help="Enable debug logging",
    )
    @click.option(
        "--dry-run",
        "-x",
        is_flag=True,
        help="Do not act, but report what would be done",
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
    async def wrapper(*, config_file: Path, dry_run: bool, debug: bool) -> R:
        # Errors loading the configuration can only be reported to the alert
        # hook from the environment. After that, the configured hook is used.
        logger = get_logger(ROOT_LOGGER)
        slack_client = None
        if alert_hook := os.environ.get(ALERT_HOOK_ENV_VAR, None):
            slack_client = SlackWebhookClient(
                alert_hook, "podrefresh", logger=logger
            )

        try:
            config = _load_config(
                config_file=config_file, dry_run=dry_run, debug=debug
            )
            if config.alert_hook:
                slack_client = SlackWebhookClient(
                    config.alert_hook.get_secret_value(),
                    "podrefresh",
                    logger=logger,
                )
            return await func(config, slack_client)
        except Exception as exc:
            await report_exception(exc, slack_client)
            raise

    return wrapper


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """podrefresh command-line interface."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


def _load_config(*, config_file: Path, dry_run: bool, debug: bool) -> Config:
    """Load the configuration, overriding it from CLI options."""
    # Prefer config file from env var
    if env_config_path := os.getenv(CONFIG_FILE_ENV_VAR):
        config_file = Path(env_config_path)

    # Without a file at the default path, use only environment variables.
    if config_file == CONFIG_FILE and not config_file.exists():
        config = Config()
        config.configure_logging()
    else:
        config = Config.from_file(config_file)

    # For dry-run and debug, if specified, use that, and if not, do whatever
    # the config says.
    if debug:
        config.debug = debug
        config.configure_logging()
    if dry_run:
        config.dry_run = dry_run

    return config


@main.command
@_common
async def run(config: Config, slack_client: SlackWebhookClient | None) -> None:
    """Delete pods whose always-pull images have changed."""
    async with Factory.standalone(config, slack_client) as factory:
        refresher = factory.create_refresher()
        await refresher.run()


def main_with_sentry() -> None:
    """Call the main command group after initializing Sentry."""
    initialize_sentry(release=__version__)
    main()

"""Main entry point for setup-texlive CLI."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console

from setup_texlive import __version__
from setup_texlive.commands.setup import install, keys, releases, save
from setup_texlive.core.config import AppConfig

# Records go through stdlib logging so the level set from the
# configuration applies to every module logger.
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def configure_logging(level: str) -> None:
    """Apply ``level`` to the package loggers.

    A stderr handler is installed on the root logger unless the host
    application (or the test runner) already set one up.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            format="%(message)s",
            handlers=[logging.StreamHandler(sys.stderr)],
        )
    logging.getLogger("setup_texlive").setLevel(getattr(logging, level))


@click.group()
@click.version_option(version=__version__, prog_name="setup-texlive")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["rich", "json", "plain"], case_sensitive=False),
    default="rich",
    help="Output format",
)
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="State file shared between `install` and `save`",
)
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    verbose: bool,
    debug: bool,
    output: str,
    state_file: Path | None,
) -> None:
    """Install and cache TeX Live in CI jobs."""
    ctx.ensure_object(dict)

    try:
        app_config = AppConfig.load(config)
    except (OSError, ValueError) as e:
        logger.error("config_load_failed", path=str(config) if config else None, error=str(e))
        sys.exit(1)

    if debug:
        app_config.log_level = "DEBUG"
    elif verbose:
        app_config.log_level = "INFO"
    app_config.output_format = output
    if state_file is not None:
        app_config.state_file = state_file
    configure_logging(app_config.log_level)

    ctx.obj["config"] = app_config
    ctx.obj["console"] = Console(
        force_terminal=output == "rich",
        no_color=output != "rich",
        width=None if output == "rich" else 120,
    )
    ctx.obj["verbose"] = verbose or debug

    logger.debug("cli_initialized", config=app_config.model_dump(mode="json"))


@main.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    console: Console = ctx.obj["console"]
    config: AppConfig = ctx.obj["config"]

    if config.output_format == "json":
        info = {
            "name": "setup-texlive",
            "version": __version__,
            "python_version": sys.version.replace("\n", " "),
            "platform": sys.platform,
        }
        # Plain print keeps Rich from wrapping the JSON
        print(json.dumps(info, indent=2))
        return

    console.print(f"setup-texlive {__version__}")
    if ctx.obj["verbose"]:
        console.print(f"Python {sys.version}")
        console.print(f"Platform: {sys.platform}")


# Register commands
main.add_command(install)
main.add_command(save)
main.add_command(keys)
main.add_command(releases)


def handle_exception(exc_type: type[BaseException], exc_value: BaseException, exc_traceback: Any) -> None:
    """Handle uncaught exceptions."""
    if issubclass(exc_type, KeyboardInterrupt):
        logger.info("operation_cancelled")
        sys.exit(1)

    logger.error(
        "uncaught_exception",
        exc_info=(exc_type, exc_value, exc_traceback),
    )
    sys.exit(1)


def run() -> None:
    """Console script entry point."""
    sys.excepthook = handle_exception

    try:
        main()
    except Exception as e:
        logger.error("cli_execution_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    run()

"""CLI entrypoint for trilium-tui."""

import sys
from pathlib import Path

import click

from . import __version__


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="trilium-tui")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Path to config file (defaults to ~/.trilium-cli/config.yaml)",
)
@click.option("--profile", "-p", default=None, help="Profile to use from the config file")
@click.option("--server-url", default=None, help="Trilium server URL (overrides config and $TRILIUM_SERVER_URL)")
@click.option("--token", "api_token", default=None, help="ETAPI token (overrides config and $TRILIUM_API_TOKEN)")
@click.option("--debug", is_flag=True, help="Start with debug logging enabled")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also append logs to this file",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    profile: str | None,
    server_url: str | None,
    api_token: str | None,
    debug: bool,
    log_file: Path | None,
) -> None:
    """trilium-tui - Terminal client for Trilium notes.

    Browse the note tree, search, and edit notes in your $EDITOR.
    Runs the interactive UI when no command is given.
    """
    ctx.ensure_object(dict)
    ctx.obj.update(
        config_path=config_path,
        profile=profile,
        server_url=server_url,
        api_token=api_token,
        debug=debug,
        log_file=log_file,
    )
    if ctx.invoked_subcommand is None:
        ctx.invoke(tui)


@cli.command()
@click.pass_context
def tui(ctx: click.Context) -> None:
    """Start the interactive note browser."""
    from .commands.tui_cmd import run_tui

    exit_code = run_tui(**ctx.obj)
    sys.exit(exit_code)


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check that the configured server is reachable and the token works."""
    from .commands.tui_cmd import run_check

    exit_code = run_check(**ctx.obj)
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()

"""Commands that start the interactive UI or check the server."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
from rich.console import Console

from ..api import EtapiClient
from ..config import Config, load_config
from ..errors import ConfigError, TriliumError
from ..logs import setup_logging


def _load(
    config_path: Path | None,
    profile: str | None,
    server_url: str | None,
    api_token: str | None,
) -> Config:
    try:
        return load_config(config_path, profile_name=profile, server_url=server_url, api_token=api_token)
    except ConfigError as e:
        raise click.ClickException(e.message) from e


def run_tui(
    *,
    config_path: Path | None = None,
    profile: str | None = None,
    server_url: str | None = None,
    api_token: str | None = None,
    debug: bool = False,
    log_file: Path | None = None,
) -> int:
    """
    Run the interactive note browser until the user quits.

    Returns a process exit code.
    """
    from ..tui.app import run_app

    config = _load(config_path, profile, server_url, api_token)
    buffer = setup_logging(debug=debug, log_file=log_file, capacity=config.tui.max_log_entries)

    console = Console(stderr=True)
    try:
        run_app(config, log_buffer=buffer, debug=debug)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


def run_check(
    *,
    config_path: Path | None = None,
    profile: str | None = None,
    server_url: str | None = None,
    api_token: str | None = None,
    debug: bool = False,
    log_file: Path | None = None,
) -> int:
    """Connect once and report the server version."""
    config = _load(config_path, profile, server_url, api_token)
    setup_logging(debug=debug, log_file=log_file)
    console = Console()

    async def check():
        async with EtapiClient(config.profile.server_url, config.profile.api_token) as api:
            return await api.test_connection()

    try:
        info = asyncio.run(check())
    except TriliumError as e:
        console.print(f"[red]Connection to {config.profile.server_url} failed:[/red] {e.message}")
        return 1

    console.print(f"[green]Connected[/green] to {config.profile.server_url} (profile: {config.profile.name})")
    console.print(f"  Trilium version: {info.app_version or 'unknown'}")
    console.print(f"  Database version: {info.db_version}")
    return 0

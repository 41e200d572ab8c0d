"""CLI interface for WebShell sessions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from console.config import config_to_yaml, default_config, load_config, save_config
from console.session import SessionClosed, run_commands, run_interactive
from webshell_core.errors import ActorFailure
from webshell_core.schemas import SessionConfig

app = typer.Typer(help="WebShell sandboxed terminal CLI")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _load(config_path: Optional[str]) -> SessionConfig:
    if config_path is None:
        return default_config()
    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        typer.secho(f"❌ Config file not found: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.secho(f"❌ Invalid config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


def _configure_logging(config: SessionConfig, log_level: Optional[str]) -> None:
    level = (log_level or config.log_level).upper()
    if level not in LOG_LEVELS:
        typer.secho(f"❌ Invalid log level: {log_level}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def run(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to session YAML config"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level"),
) -> None:
    """Start an interactive session on stdin/stdout."""
    config = _load(config_path)
    _configure_logging(config, log_level)

    typer.secho("🐚 WebShell: end a line with \\ to continue, :top/:bottom to navigate, :exit to quit", fg=typer.colors.BLUE)
    try:
        run_interactive(config)
    except ActorFailure as e:
        typer.secho(f"❌ Session failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        typer.echo()
    typer.secho("👋 Bye", fg=typer.colors.BLUE)


@app.command("exec")
def exec_commands(
    commands: list[str] = typer.Argument(..., help="Commands to run, in order, in one session"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to session YAML config"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level"),
) -> None:
    """Run commands in one session; exit code 1 if any error was printed."""
    config = _load(config_path)
    _configure_logging(config, log_level)

    try:
        errors = run_commands(config, commands)
    except (ActorFailure, SessionClosed) as e:
        typer.secho(f"❌ Session failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if errors:
        raise typer.Exit(1)


@app.command()
def show_config(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to session YAML config"),
) -> None:
    """Print the effective configuration as YAML."""
    config = _load(config_path)
    typer.echo(config_to_yaml(config), nl=False)


@app.command()
def init_config(
    path: str = typer.Argument(..., help="Where to write the default configuration"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write the default configuration as YAML."""
    target = Path(path)
    if target.exists() and not force:
        typer.secho(f"❌ File already exists: {target} (use --force)", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    save_config(default_config(), target)
    typer.secho("✅ Config written", fg=typer.colors.GREEN)
    typer.echo(f"   {target}")


if __name__ == "__main__":
    app()

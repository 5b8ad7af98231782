"""
Catechesis Admin — CLI Entry Point

Usage:
    catechesis-admin serve [--port 5050] [--no-browser]
    catechesis-admin hash-password
    catechesis-admin settings show
    catechesis-admin roster import planilha.xlsx
"""

from __future__ import annotations

# Load .env FIRST, before any other imports that might read env vars
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import os
from typing import Optional

import click

from .auth.session import hash_password
from .cli.config import check_config, config_status, generate_config
from .cli.github import github_group
from .cli.logs import analytics_group, logs_group
from .cli.ops import circuit_breakers_cmd, health, retry_queue_cmd
from .cli.roster import roster_group
from .cli.settings import settings_group
from .errors import AppError
from .logging_config import setup_logging

ROOT_ENV_VAR = "CATECHESIS_ADMIN_ROOT"


class AppGroup(click.Group):
    """Turns application errors into a one-line message and exit status 1."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except AppError as e:
            raise click.ClickException(str(e)) from e


def get_project_root() -> Path:
    """Directory holding ``state/`` (``$CATECHESIS_ADMIN_ROOT`` or the cwd)."""
    return Path(os.environ.get(ROOT_ENV_VAR) or Path.cwd())


@click.group(cls=AppGroup)
@click.option("--root", type=click.Path(file_okay=False), help=f"Project directory (default: ${ROOT_ENV_VAR} or cwd)")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
@click.pass_context
def cli(ctx: click.Context, root: Optional[str], log_level: Optional[str]) -> None:
    """Catechesis Admin — parish catechesis site administration."""
    setup_logging(level=log_level)
    ctx.ensure_object(dict)
    if root:
        ctx.obj["root"] = Path(root)
    ctx.obj.setdefault("root", get_project_root())


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=5050, show_default=True)
@click.option("--no-browser", is_flag=True, help="Don't open browser")
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, no_browser: bool, debug: bool) -> None:
    """Run the local admin panel."""
    from .admin.server import run_server

    os.chdir(ctx.obj["root"])
    run_server(host=host, port=port, open_browser=not no_browser, debug=debug)


@cli.command("hash-password")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
def hash_password_cmd(password: str) -> None:
    """Print an ADMIN_PASSWORD_HASH value for .env."""
    if len(password) < 8:
        raise click.BadParameter("use at least 8 characters", param_hint="--password")
    click.echo(hash_password(password))
    click.secho("\nAdd to .env as ADMIN_PASSWORD_HASH=<value above>", fg="cyan", err=True)


# Config commands (cli/config.py)
cli.add_command(check_config)
cli.add_command(config_status)
cli.add_command(generate_config)

# Ops commands (cli/ops.py)
cli.add_command(health)
cli.add_command(retry_queue_cmd)
cli.add_command(circuit_breakers_cmd)

# Command groups
cli.add_command(settings_group)
cli.add_command(roster_group)
cli.add_command(github_group)
cli.add_command(logs_group)
cli.add_command(analytics_group)


if __name__ == "__main__":
    cli()

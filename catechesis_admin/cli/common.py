"""
Shared helpers for the CLI command modules.

Commands read their collaborators from ``ctx.obj``:

    root            Directory holding ``state/``
    config          AdminConfig (loaded from the environment on first use)
    github_options  Extra GitHubClient keyword arguments (tests pass a transport)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import click

from ..config.loader import AdminConfig, load_config
from ..config.settings_manager import SettingsManager
from ..errors import MissingConfigurationError
from ..github.client import GitHubClient
from ..persistence.operation_log import OperationLog
from ..reliability.retry_queue import RetryQueue


def state_dir(ctx: click.Context) -> Path:
    return Path(ctx.obj["root"]) / "state"


def get_admin_config(ctx: click.Context) -> AdminConfig:
    if ctx.obj.get("config") is None:
        ctx.obj["config"] = load_config()
    return ctx.obj["config"]


def get_client(ctx: click.Context, required: bool = True) -> Optional[GitHubClient]:
    config = get_admin_config(ctx)
    if not config.has_github():
        if required:
            raise MissingConfigurationError("GITHUB_TOKEN")
        return None
    if ctx.obj.get("client") is None:
        ctx.obj["client"] = GitHubClient.from_config(config, **ctx.obj.get("github_options", {}))
    return ctx.obj["client"]


def get_oplog(ctx: click.Context) -> OperationLog:
    return OperationLog(state_dir(ctx) / "operations.json", user="cli")


def get_retry_queue(ctx: click.Context) -> RetryQueue:
    return RetryQueue(state_dir(ctx) / "commit_queue.json")


def get_settings_manager(ctx: click.Context, offline: bool = False) -> SettingsManager:
    config = get_admin_config(ctx)
    return SettingsManager(
        state_dir(ctx),
        client=None if offline else get_client(ctx, required=False),
        oplog=get_oplog(ctx),
        retry_queue=get_retry_queue(ctx),
        repository=config.github_repository or "",
        branch=config.github_branch,
    )


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


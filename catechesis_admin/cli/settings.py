"""
CLI settings commands — site settings document.

Usage:
    catechesis-admin settings show [--path paroquia.nome]
    catechesis-admin settings validate [FILE]
    catechesis-admin settings pull
    catechesis-admin settings push FILE [--local]
    catechesis-admin settings diff FILE
    catechesis-admin settings set PATH VALUE [--local]
    catechesis-admin settings backup [-d TEXT]
    catechesis-admin settings backups
    catechesis-admin settings restore BACKUP_ID [--local]
    catechesis-admin settings export [-o FILE]
    catechesis-admin settings import FILE [--local]
    catechesis-admin settings reset [--local] [--yes]
"""

from __future__ import annotations

import json

import click

from ..config.settings_manager import get_config_differences, validate_settings
from ..errors import ValidationError
from .common import echo_json, get_settings_manager

local_option = click.option("--local", is_flag=True, help="Only update the local copy, don't commit")


def _read_json(path: str) -> dict:
    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"JSON inválido em {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"{path} não contém um objeto JSON")
    return data.get("config", data) if isinstance(data.get("config"), dict) else data


def _print_result(result: dict) -> None:
    if result["commit"]:
        click.secho(f"✅ Settings committed ({(result['commit']['commit_sha'] or '')[:8]})", fg="green")
    elif result["queued"]:
        click.secho("⚠️  Saved locally; the commit is queued for retry", fg="yellow")
    else:
        click.secho("✅ Settings saved locally", fg="green")
    for warning in result["warnings"]:
        click.secho(f"  ⚠ {warning}", fg="yellow")


def _parse_value(raw: str):
    """JSON literals (numbers, booleans, lists) when they parse, else the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@click.group("settings")
def settings_group() -> None:
    """Site settings (config/settings.json)."""


@settings_group.command("show")
@click.option("--path", "dot_path", help="Show one value, e.g. paroquia.nome")
@click.pass_context
def show(ctx: click.Context, dot_path: str) -> None:
    manager = get_settings_manager(ctx)
    if dot_path:
        echo_json(manager.get_value(dot_path))
        return
    config = manager.load()
    config.get("github", {}).pop("token", None)
    click.secho(f"# source: {manager.source}", fg="cyan", err=True)
    echo_json(config)


@settings_group.command("validate")
@click.argument("file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def validate(ctx: click.Context, file: str) -> None:
    """Validate FILE, or the current settings."""
    config = _read_json(file) if file else get_settings_manager(ctx).load()
    result = validate_settings(config)

    for error in result.errors:
        click.secho(f"  ✗ {error}", fg="red")
    for warning in result.warnings:
        click.secho(f"  ⚠ {warning}", fg="yellow")

    if not result.is_valid:
        click.secho(f"❌ {len(result.errors)} error(s)", fg="red", bold=True)
        raise SystemExit(1)
    click.secho("✅ Settings are valid", fg="green")


@settings_group.command("pull")
@click.pass_context
def pull(ctx: click.Context) -> None:
    """Fetch the settings from GitHub into the local copy."""
    manager = get_settings_manager(ctx)
    manager.load(force=True)
    if manager.source != "github":
        click.secho(f"⚠️  GitHub copy unavailable, using {manager.source}", fg="yellow")
        raise SystemExit(1)
    click.secho(f"✅ Settings pulled to {manager.local_path}", fg="green")


@settings_group.command("push")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("-m", "--message", help="Commit message")
@local_option
@click.pass_context
def push(ctx: click.Context, file: str, message: str, local: bool) -> None:
    """Validate FILE and publish it as the new settings."""
    manager = get_settings_manager(ctx, offline=local)
    _print_result(manager.update_settings(_read_json(file), push=not local, message=message))


@settings_group.command("diff")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def diff(ctx: click.Context, file: str) -> None:
    """Compare FILE with the current settings."""
    current = get_settings_manager(ctx).load()
    differences = get_config_differences(current, _read_json(file))

    if not any(differences.values()):
        click.echo("No differences")
        return
    for key, value in sorted(differences["added"].items()):
        click.secho(f"+ {key} = {json.dumps(value, ensure_ascii=False)}", fg="green")
    for key, value in sorted(differences["removed"].items()):
        click.secho(f"- {key} = {json.dumps(value, ensure_ascii=False)}", fg="red")
    for key, change in sorted(differences["modified"].items()):
        click.secho(
            f"~ {key}: {json.dumps(change['old'], ensure_ascii=False)} → "
            f"{json.dumps(change['new'], ensure_ascii=False)}",
            fg="yellow",
        )


@settings_group.command("set")
@click.argument("dot_path")
@click.argument("value")
@local_option
@click.pass_context
def set_value(ctx: click.Context, dot_path: str, value: str, local: bool) -> None:
    """Change one value, e.g. `settings set paroquia.ano_catequetico 2027`."""
    manager = get_settings_manager(ctx, offline=local)
    _print_result(manager.set_value(dot_path, _parse_value(value), push=not local))


# ── Backups ──────────────────────────────────────────────────────


@settings_group.command("backup")
@click.option("-d", "--description", default="Backup manual")
@click.pass_context
def backup(ctx: click.Context, description: str) -> None:
    created = get_settings_manager(ctx).create_backup(description=description)
    click.secho(f"✅ Backup created: {created['id']}", fg="green")


@settings_group.command("backups")
@click.pass_context
def backups(ctx: click.Context) -> None:
    items = get_settings_manager(ctx, offline=True).list_backups()
    if not items:
        click.echo("No backups")
        return
    for item in items:
        click.echo(f"  {item['id']}  {item['timestamp']}  {item['description']}")


@settings_group.command("restore")
@click.argument("backup_id")
@local_option
@click.pass_context
def restore(ctx: click.Context, backup_id: str, local: bool) -> None:
    manager = get_settings_manager(ctx, offline=local)
    _print_result(manager.restore_backup(backup_id, push=not local))


# ── Import / export ──────────────────────────────────────────────


@settings_group.command("export")
@click.option("-o", "--output", help="Output file (default: stdout)")
@click.pass_context
def export(ctx: click.Context, output: str) -> None:
    body = get_settings_manager(ctx).export_config()
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(body)
        click.secho(f"✅ Settings exported to {output}", fg="green")
    else:
        click.echo(body)


@settings_group.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@local_option
@click.pass_context
def import_settings(ctx: click.Context, file: str, local: bool) -> None:
    with open(file, encoding="utf-8-sig") as f:
        text = f.read()
    manager = get_settings_manager(ctx, offline=local)
    _print_result(manager.import_config(text, push=not local))


@settings_group.command("reset")
@local_option
@click.option("--yes", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def reset(ctx: click.Context, local: bool, yes: bool) -> None:
    """Restore default settings (the parish identity is kept)."""
    if not yes:
        click.confirm("Reset all settings to defaults?", abort=True)
    manager = get_settings_manager(ctx, offline=local)
    _print_result(manager.reset_to_defaults(push=not local))

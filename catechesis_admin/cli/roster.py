"""
CLI roster commands — catechesis spreadsheet.

Usage:
    catechesis-admin roster import FILE [--push]
    catechesis-admin roster stats [--json]
    catechesis-admin roster report KIND [--json]
    catechesis-admin roster export OUTPUT
    catechesis-admin roster push [--path data/dados-catequese.json]
"""

from __future__ import annotations

from pathlib import Path

import click

from ..errors import NotFoundError
from ..files.upload import FileUploader
from ..roster.excel import DEFAULT_JSON_PATH, REPORT_KINDS, RosterManager
from .common import echo_json, get_client, get_oplog, state_dir


def _roster_path(ctx: click.Context) -> Path:
    return state_dir(ctx) / "roster.json"


def _loaded(ctx: click.Context) -> RosterManager:
    roster = RosterManager.from_state(_roster_path(ctx))
    if roster.loaded_at is None:
        raise NotFoundError("Nenhuma planilha carregada (use `roster import`)", code="ROSTER_NOT_LOADED")
    return roster


@click.group("roster")
def roster_group() -> None:
    """Catechesis spreadsheet (catechumens, classes, catechists)."""


@roster_group.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--push", "do_push", is_flag=True, help="Also publish the JSON to GitHub")
@click.pass_context
def import_workbook(ctx: click.Context, file: str, do_push: bool) -> None:
    """Load an .xlsx workbook into the local roster."""
    content = Path(file).read_bytes()
    FileUploader(None).check(Path(file).name, content, "excel")

    roster = RosterManager()
    stats = roster.load_workbook(content, name=Path(file).name)
    roster.save_state(_roster_path(ctx))

    click.secho(f"✅ Loaded {Path(file).name}", fg="green")
    click.echo(f"   Catechumens: {stats['total_catechumens']}")
    click.echo(f"   Classes:     {stats['total_classes']}")
    click.echo(f"   Catechists:  {stats['total_catechists']}")

    oplog = get_oplog(ctx)
    oplog.log_success("upload", f"Planilha carregada: {Path(file).name} ({stats['total_catechumens']} catecúmenos)")

    if do_push:
        commit = roster.save_to_github(get_client(ctx))
        oplog.log_success("commit", "Dados publicados", details={"commit_sha": commit.commit_sha}, files=[DEFAULT_JSON_PATH])
        click.secho(f"✅ Published {DEFAULT_JSON_PATH} ({(commit.commit_sha or '')[:8]})", fg="green")


@roster_group.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx: click.Context, as_json: bool) -> None:
    roster = _loaded(ctx)
    data = roster.get_statistics()
    if as_json:
        echo_json(data)
        return

    click.echo()
    click.secho(f"📊 {roster.source_name or 'Roster'} (loaded {roster.loaded_at})", bold=True)
    click.echo(f"   Catechumens: {data['total_catechumens']}")
    click.echo(f"   Classes:     {data['total_classes']}")
    click.echo(f"   Catechists:  {data['total_catechists']}")
    if data["by_center"]:
        click.echo()
        click.echo("   By center:")
        for center, count in sorted(data["by_center"].items()):
            click.echo(f"     {center}: {count}")
    if data["results"]:
        click.echo()
        click.echo("   Results:")
        for result, count in sorted(data["results"].items()):
            click.echo(f"     {result}: {count}")
    click.echo()


@roster_group.command("report")
@click.argument("kind", type=click.Choice(REPORT_KINDS))
@click.pass_context
def report(ctx: click.Context, kind: str) -> None:
    echo_json(_loaded(ctx).generate_report(kind))


@roster_group.command("export")
@click.argument("output", type=click.Path(dir_okay=False))
@click.pass_context
def export(ctx: click.Context, output: str) -> None:
    """Write the roster to an .xlsx file."""
    content = _loaded(ctx).export_to_excel()
    Path(output).write_bytes(content)
    click.secho(f"✅ Exported to {output}", fg="green")


@roster_group.command("push")
@click.option("--path", "repo_path", default=DEFAULT_JSON_PATH, show_default=True)
@click.option("-m", "--message", help="Commit message")
@click.pass_context
def push(ctx: click.Context, repo_path: str, message: str) -> None:
    """Publish the roster JSON the public pages read."""
    roster = _loaded(ctx)
    commit = roster.save_to_github(get_client(ctx), path=repo_path, message=message)
    get_oplog(ctx).log_success(
        "commit",
        f"Dados publicados ({len(roster.catechumens)} registros)",
        details={"commit_sha": commit.commit_sha},
        files=[repo_path],
    )
    click.secho(f"✅ Published {repo_path} ({(commit.commit_sha or '')[:8]})", fg="green")

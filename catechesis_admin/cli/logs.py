"""
CLI log and analytics commands.

Usage:
    catechesis-admin logs list [--type T] [--status S] [--search Q] [--limit N]
    catechesis-admin logs stats
    catechesis-admin logs export [--format json|csv] [-o FILE]
    catechesis-admin logs clear [--yes]
    catechesis-admin analytics summary [--days 7]
    catechesis-admin analytics cleanup [--keep-days 90]
"""

from __future__ import annotations

import click

from ..analytics.tracker import VisitTracker
from .common import echo_json, get_oplog, state_dir

STATUS_COLORS = {"success": "green", "error": "red", "warning": "yellow", "info": "cyan"}


@click.group("logs")
def logs_group() -> None:
    """Operation log."""


@logs_group.command("list")
@click.option("--type", "op_type", help="Operation type (config, upload, commit, auth, ...)")
@click.option("--status", type=click.Choice(sorted(STATUS_COLORS)))
@click.option("--from", "date_from", help="Start date (YYYY-MM-DD)")
@click.option("--to", "date_to", help="End date (YYYY-MM-DD)")
@click.option("--search", help="Text to look for")
@click.option("--limit", default=20, show_default=True)
@click.pass_context
def list_logs(ctx: click.Context, op_type, status, date_from, date_to, search, limit: int) -> None:
    entries = get_oplog(ctx).get_logs(
        op_type=op_type,
        status=status,
        date_from=date_from,
        date_to=date_to,
        search=search,
        limit=limit,
    )
    if not entries:
        click.echo("No operations logged")
        return
    for entry in entries:
        click.echo(f"  {entry['timestamp'][:19]}  ", nl=False)
        click.secho(f"{entry['status']:<8}", fg=STATUS_COLORS.get(entry["status"], "white"), nl=False)
        click.echo(f" {entry['type']:<8} {entry['message']}")


@logs_group.command("stats")
@click.pass_context
def stats(ctx: click.Context) -> None:
    echo_json(get_oplog(ctx).get_statistics())


@logs_group.command("export")
@click.option("--format", "fmt", type=click.Choice(["json", "csv"]), default="json")
@click.option("-o", "--output", help="Output file (default: stdout)")
@click.pass_context
def export(ctx: click.Context, fmt: str, output: str) -> None:
    oplog = get_oplog(ctx)
    body = oplog.export_csv() if fmt == "csv" else oplog.export_json()
    if output:
        with open(output, "w", encoding="utf-8", newline="") as f:
            f.write(body)
        click.secho(f"✅ Log exported to {output}", fg="green")
    else:
        click.echo(body)


@logs_group.command("clear")
@click.option("--yes", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    if not yes:
        click.confirm("Delete the whole operation log?", abort=True)
    count = get_oplog(ctx).clear()
    click.secho(f"✅ Cleared {count} entries", fg="green")


# ── Analytics ────────────────────────────────────────────────────


@click.group("analytics")
def analytics_group() -> None:
    """Public site visit statistics."""


def _tracker(ctx: click.Context) -> VisitTracker:
    return VisitTracker(state_dir(ctx) / "analytics.json")


@analytics_group.command("summary")
@click.option("--days", default=7, show_default=True, type=click.IntRange(1, 365))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def summary(ctx: click.Context, days: int, as_json: bool) -> None:
    data = _tracker(ctx).get_summary(days)
    if as_json:
        echo_json(data)
        return

    click.echo()
    click.secho(f"📈 Last {days} days", bold=True)
    click.echo(f"   Visits:          {data['total_visits']}")
    click.echo(f"   Unique visitors: {data['unique_visitors']}")
    click.echo(f"   Daily average:   {data['average_daily_visits']}")
    if data["top_pages"]:
        click.echo()
        click.echo("   Top pages:")
        for item in data["top_pages"]:
            click.echo(f"     {item['page']}: {item['visits']}")
    click.echo()


@analytics_group.command("cleanup")
@click.option("--keep-days", default=90, show_default=True)
@click.pass_context
def cleanup(ctx: click.Context, keep_days: int) -> None:
    removed = _tracker(ctx).cleanup(keep_days)
    click.secho(f"✅ Removed {removed} day(s)", fg="green")

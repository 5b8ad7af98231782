"""
CLI ops commands — health, commit retry queue, circuit breakers.

Usage:
    catechesis-admin health [--json]
    catechesis-admin retry-queue [--action status|flush|clear] [--force]
    catechesis-admin circuit-breakers [--reset]
"""

from __future__ import annotations

from pathlib import Path

import click

from .common import echo_json, get_admin_config, get_client, get_oplog, get_retry_queue


@click.command("health")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Check system health status."""
    from ..observability.health import HealthChecker, HealthStatus

    checker = HealthChecker(
        Path(ctx.obj["root"]),
        get_admin_config(ctx),
        client=get_client(ctx, required=False),
    )
    result = checker.check()

    if as_json:
        echo_json(result.to_dict())
        if result.status == HealthStatus.UNHEALTHY:
            raise SystemExit(1)
        return

    status_colors = {
        HealthStatus.HEALTHY: ("✅", "green"),
        HealthStatus.DEGRADED: ("⚠️", "yellow"),
        HealthStatus.UNHEALTHY: ("❌", "red"),
    }
    icon, color = status_colors.get(result.status, ("❓", "white"))

    click.echo()
    click.secho(f"{icon} System Health: {result.status.value.upper()}", fg=color, bold=True)
    click.echo()

    click.echo("Components:")
    for component in result.components:
        c_icon, c_color = status_colors.get(component.status, ("❓", "white"))
        click.echo(f"  {c_icon} ", nl=False)
        click.secho(component.name, fg=c_color, bold=True, nl=False)
        click.echo(f": {component.message}")
        if component.latency_ms:
            click.echo(f"      Latency: {component.latency_ms:.1f}ms")

    click.echo()

    if result.status == HealthStatus.UNHEALTHY:
        raise SystemExit(1)


@click.command("retry-queue")
@click.option("--action", type=click.Choice(["status", "flush", "clear"]), default="status")
@click.option("--force", is_flag=True, help="Flush items whose backoff has not elapsed")
@click.pass_context
def retry_queue_cmd(ctx: click.Context, action: str, force: bool) -> None:
    """Manage commits waiting to be retried."""
    queue = get_retry_queue(ctx)

    if action == "status":
        stats = queue.get_stats()
        click.echo()
        click.echo("📋 Commit Queue Status")
        click.echo()
        click.echo(f"  Total items:   {stats['total_items']}")
        click.echo(f"  Pending now:   {stats['pending_now']}")
        click.echo(f"  Exhausted:     {stats['exhausted']}")
        for item in stats["items"]:
            click.echo(
                f"    {item['path']}  attempt {item['attempt_count']}/{item['max_attempts']}"
                f"  next {item['next_retry_at']}"
            )
        click.echo()

    elif action == "flush":
        result = queue.flush(get_client(ctx), force=force)
        if result["succeeded"]:
            get_oplog(ctx).log_success(
                "commit",
                f"{len(result['succeeded'])} commit(s) pendente(s) enviado(s)",
                files=result["succeeded"],
            )
        click.secho(f"✅ Sent {len(result['succeeded'])} of {result['attempted']}", fg="green")
        for failure in result["failed"]:
            click.secho(f"  ✗ {failure['path']}: {failure['error']}", fg="red")
        if result["failed"]:
            raise SystemExit(1)

    elif action == "clear":
        count = queue.clear()
        click.secho(f"✅ Cleared {count} items from commit queue", fg="green")


@click.command("circuit-breakers")
@click.option("--reset", "do_reset", is_flag=True, help="Reset all circuit breakers")
@click.pass_context
def circuit_breakers_cmd(ctx: click.Context, do_reset: bool) -> None:
    """View and manage circuit breakers."""
    from ..reliability.circuit_breaker import get_registry

    registry = get_registry()

    if do_reset:
        registry.reset_all()
        click.secho("✅ All circuit breakers reset", fg="green")
        return

    stats = registry.get_all_stats()
    if not stats:
        click.echo("No circuit breakers registered")
        return

    colors = {"closed": ("🟢", "green"), "open": ("🔴", "red"), "half_open": ("🟡", "yellow")}

    click.echo()
    click.echo("🔌 Circuit Breakers")
    click.echo()
    for name, data in stats.items():
        icon, color = colors.get(data["state"], ("⚪", "white"))
        click.echo(f"  {icon} ", nl=False)
        click.secho(name, fg=color, bold=True, nl=False)
        click.echo(f": {data['state']}")
    click.echo()

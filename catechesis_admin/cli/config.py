"""
CLI config commands — environment checks and templates.

Usage:
    catechesis-admin check-config
    catechesis-admin config-status [--json]
    catechesis-admin generate-config [--output FILE]
"""

from __future__ import annotations

import click

from .common import echo_json, get_admin_config


@click.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Check which parts of the environment are configured."""
    from ..config.validator import ConfigValidator

    results = ConfigValidator().validate_all()

    click.echo("\n📋 Configuration Status\n")

    not_configured = []
    for name, status in results.items():
        if status.configured:
            click.secho(f"  ✓ {name}", fg="green", nl=False)
            click.echo(f" — {', '.join(status.present) or 'nothing required'}")
            continue
        not_configured.append((name, status))
        click.secho(f"  ✗ {name}", fg="red", nl=False)
        details = [f"missing: {', '.join(status.missing)}"] if status.missing else []
        details.extend(status.problems)
        click.echo(f" — {'; '.join(details)}")

    click.echo()
    click.secho(
        f"Summary: {len(results) - len(not_configured)} configured, {len(not_configured)} not configured",
        bold=True,
    )

    if not_configured:
        click.echo("\n📖 Setup Guide:\n")
        for name, status in not_configured:
            click.echo(f"  {name}:")
            click.echo(f"    → {status.guidance}")
        raise SystemExit(1)


@click.command("config-status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config_status(ctx: click.Context, as_json: bool) -> None:
    """Show the effective (non-secret) admin configuration."""
    public = get_admin_config(ctx).to_public_dict()
    if as_json:
        echo_json(public)
        return

    click.echo()
    for key, value in public.items():
        click.echo(f"  {key:<26} {value if value not in (None, '') else '—'}")
    click.echo()


@click.command("generate-config")
@click.option("--output", "-o", help="Output file (default: stdout)")
@click.pass_context
def generate_config(ctx: click.Context, output: str) -> None:
    """
    Generate a CATECHESIS_ADMIN_CONFIG template.

    One JSON value can replace the individual environment variables.
    """
    from ..config.loader import generate_master_config_template

    template = generate_master_config_template()

    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(template)
        click.secho(f"✅ Template written to {output}", fg="green")
        click.echo()
        click.echo("Next steps:")
        click.echo("  1. Fill in the token and the password hash")
        click.echo("  2. Put the JSON in .env as CATECHESIS_ADMIN_CONFIG='...'")
    else:
        click.echo(template)

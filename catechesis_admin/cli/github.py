"""
CLI GitHub commands — connection, deployment, uploads.

Usage:
    catechesis-admin github status
    catechesis-admin github rate-limit
    catechesis-admin github commits [--limit N] [--path P]
    catechesis-admin github deploy-status
    catechesis-admin github monitor COMMIT_SHA [--max-wait 300]
    catechesis-admin github verify [--expect TEXT] [--path P]
    catechesis-admin github upload FILE... [--kind excel|image|template]|image|template]
"""

from __future__ import annotations

from pathlib import Path

import click

from ..files.upload import FILE_KINDS, FileUploader
from ..github.deployment import DeploymentMonitor
from .common import echo_json, get_admin_config, get_client, get_oplog


def _monitor(ctx: click.Context) -> DeploymentMonitor:
    return DeploymentMonitor(get_client(ctx), site_url=get_admin_config(ctx).site_url)


@click.group("github")
def github_group() -> None:
    """Site repository on GitHub."""


@github_group.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Test the connection and the token's write access."""
    client = get_client(ctx)
    access = client.validate_access()

    if not access["valid"]:
        click.secho(f"❌ {access['message']}", fg="red")
        raise SystemExit(1)

    click.secho(f"✅ {access['message']}", fg="green")
    click.echo(f"   User:       {access['user']}")
    click.echo(f"   Repository: {access['repository']}")
    click.echo(f"   Branch:     {client.branch}")
    remaining = client.rate_limit.remaining
    if remaining is not None:
        click.echo(f"   API budget: {remaining}/{client.rate_limit.limit}")


@github_group.command("rate-limit")
@click.pass_context
def rate_limit(ctx: click.Context) -> None:
    echo_json(get_client(ctx).check_rate_limit())


@github_group.command("commits")
@click.option("--limit", default=10, show_default=True)
@click.option("--path", "repo_path", help="Only commits touching this path")
@click.pass_context
def commits(ctx: click.Context, limit: int, repo_path: str) -> None:
    for commit in get_client(ctx).get_recent_commits(limit=limit, path=repo_path):
        first_line = commit["message"].splitlines()[0] if commit["message"] else ""
        click.echo(f"  {commit['short_sha']}  {commit['date'] or '':<20}  {first_line}")


@github_group.command("deploy-status")
@click.pass_context
def deploy_status(ctx: click.Context) -> None:
    result = _monitor(ctx).check_deployment_status()
    color = {"built": "green", "building": "yellow", "errored": "red"}.get(result["status"], "white")
    click.secho(f"GitHub Pages: {result['status']}", fg=color, bold=True)
    if result["url"]:
        click.echo(f"   URL: {result['url']}")
    latest = result.get("last_deployment")
    if latest:
        click.echo(f"   Last build: {latest['status']} ({(latest['commit'] or '')[:7]}, {latest['updated_at']})")
        if latest.get("error"):
            click.secho(f"   Error: {latest['error']}", fg="red")


@github_group.command("monitor")
@click.argument("commit_sha")
@click.option("--max-wait", default=300.0, show_default=True, help="Seconds to wait")
@click.option("--interval", default=10.0, show_default=True, help="Seconds between polls")
@click.pass_context
def monitor(ctx: click.Context, commit_sha: str, max_wait: float, interval: float) -> None:
    """Wait for the Pages build of COMMIT_SHA."""

    def progress(percent: int, message: str) -> None:
        click.echo(f"  [{percent:3d}%] {message}")

    result = _monitor(ctx).monitor_deployment(
        commit_sha,
        progress_callback=progress,
        max_wait=max_wait,
        poll_interval=interval,
    )
    oplog = get_oplog(ctx)
    if result["success"]:
        oplog.log_success("deploy", result["message"], details={"commit_sha": commit_sha}, duration=result["duration"])
        click.secho(f"✅ {result['message']} ({result['duration']:.0f}s)", fg="green")
    else:
        oplog.log_warning("deploy", result["message"], details={"commit_sha": commit_sha}, duration=result["duration"])
        click.secho(f"❌ {result['message']}", fg="red")
        raise SystemExit(1)


@github_group.command("verify")
@click.option("--expect", "expected", help="Text the page must contain")
@click.option("--path", "test_path", default="", help="Page path under the site URL")
@click.pass_context
def verify(ctx: click.Context, expected: str, test_path: str) -> None:
    """Fetch the live site."""
    result = _monitor(ctx).verify_deployment(expected_content=expected, test_path=test_path)
    if result["verified"]:
        click.secho(f"✅ {result['message']} ({result['response_time']}ms)", fg="green")
    else:
        click.secho(f"❌ {result['message']}", fg="red")
        raise SystemExit(1)


@github_group.command("upload")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--kind", type=click.Choice(sorted(FILE_KINDS)), help="Guessed from the name when omitted")
@click.option("-m", "--message", help="Commit message")
@click.pass_context
def upload(ctx: click.Context, files: tuple, kind: str, message: str) -> None:
    """Commit Excel files, templates or images to the site, one commit each."""
    uploader = FileUploader(get_client(ctx), get_oplog(ctx))
    if len(files) > 1:
        _upload_batch(uploader, files, kind, message)
        return

    file = files[0]
    result = uploader.upload(Path(file).name, Path(file).read_bytes(), kind=kind, message=message)
    click.secho(f"✅ Uploaded to {result['path']} ({result['size_formatted']})", fg="green")
    for warning in result["warnings"]:
        click.secho(f"  ⚠ {warning}", fg="yellow")


def _upload_batch(uploader: FileUploader, files: tuple, kind: str, message: str) -> None:
    def progress(event: dict) -> None:
        click.echo(f"[{event['current']}/{event['total']}] {event['current_file']}")

    result = uploader.batch_upload(
        [(Path(f).name, Path(f).read_bytes(), kind) for f in files],
        progress_callback=progress,
        message=message,
    )
    for item in result["results"]:
        if item["success"]:
            click.secho(f"✅ {item['filename']} → {item['path']} ({item['size_formatted']})", fg="green")
        else:
            click.secho(f"❌ {item['filename']}: {item['error']}", fg="red")
    summary = result["summary"]
    click.echo(f"{summary['success']}/{summary['total']} file(s) uploaded")
    if not result["success"]:
        raise SystemExit(1)

#!/usr/bin/env python3
"""
GitFlow Live Repository Tracker CLI

Runs the tracker service, prints a repository's history, and sends hook
notifications to a running tracker's push channel.

Examples:
    repo-tracker serve --repo /path/to/repo   # track a repository, echo events
    repo-tracker serve --resume               # reopen the last repository
    repo-tracker log /path/to/repo --limit 20
    repo-tracker notify --repo "$PWD" --event commit --hash "$(git rev-parse HEAD)"
"""

import asyncio
import sys
from typing import Any, Dict, List, Optional

import click
import httpx
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from config.settings import settings
from shared.database import RepositoryStore
from shared.exceptions import RepoTrackerError
from shared.models import ChangeKind, CommitRecord
from services.repo_tracker import __version__
from services.repo_tracker.main import TrackerService
from services.repo_tracker.reader import RepositoryReader

# Initialize Rich console
console = Console()


class PushChannelClient:
    """HTTP client for a running tracker's listeners."""

    def __init__(self, host: Optional[str] = None, push_port: Optional[int] = None,
                 subscriber_port: Optional[int] = None, timeout: float = 10.0):
        host = host or settings.service.host
        self.push_url = f"http://{host}:{push_port or settings.service.push_port}"
        self.subscriber_url = f"http://{host}:{subscriber_port or settings.service.subscriber_port}"
        self.client = httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    async def send_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST one notification to the push channel."""
        try:
            response = await self.client.post(f"{self.push_url}/event", json=payload)
        except httpx.ConnectError:
            raise click.ClickException(
                "Could not connect to the push channel. Is the tracker running?"
            )
        if response.status_code != 200:
            error = response.json().get("error", "Unknown error")
            raise click.ClickException(f"Push channel rejected the event: {error}")
        return response.json()

    async def health(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """Query both listeners' health endpoints; unreachable ones map to None."""
        results: Dict[str, Optional[Dict[str, Any]]] = {}
        for name, url in (("push", self.push_url), ("subscriber", self.subscriber_url)):
            try:
                response = await self.client.get(f"{url}/health")
                response.raise_for_status()
                results[name] = response.json()
            except httpx.HTTPError:
                results[name] = None
        return results


def display_commits(repo_path: str, commits: List[CommitRecord], limit: int):
    """Display a baseline as a table."""
    table = Table(title=f"History of {escape(repo_path)}", show_header=True, header_style="bold magenta")
    table.add_column("Commit", style="cyan", no_wrap=True)
    table.add_column("Date", style="green", no_wrap=True)
    table.add_column("Author", style="yellow")
    table.add_column("Subject", style="white")
    table.add_column("Refs", style="blue")

    for commit in commits:
        subject = escape(commit.subject)
        if commit.is_merge:
            subject = f"[bold]{subject}[/bold]"
        table.add_row(
            commit.short_id,
            commit.timestamp.strftime("%Y-%m-%d %H:%M"),
            escape(commit.author),
            subject,
            escape(", ".join(commit.decorations)),
        )

    console.print(table)
    if len(commits) >= limit:
        console.print(f"[yellow]Showing the {limit} most recent commits[/yellow]")


@click.group()
@click.version_option(version=__version__)
def cli():
    """GitFlow Live - stream live Git repository changes."""
    pass


@cli.command()
@click.option("--repo", "-r", "repo_path", type=click.Path(file_okay=False), help="Repository to track")
@click.option("--resume", is_flag=True, help="Reopen the most recently tracked repository")
@click.option("--echo/--no-echo", default=True, help="Print events to the console")
def serve(repo_path: Optional[str], resume: bool, echo: bool):
    """Start the tracker service."""
    async def run():
        service = TrackerService(echo=echo, console=console)
        try:
            await service.start(repo_path=repo_path, resume=resume)
            console.print(
                f"[green]{settings.app_name} listening on {settings.service.host} "
                f"(push {service.push_server.bound_port}, "
                f"subscribers {service.subscriber_server.bound_port})[/green]"
            )
            await service.run_forever()
        finally:
            await service.stop()

    try:
        asyncio.run(run())
    except RepoTrackerError as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("repo_path", type=click.Path(file_okay=False))
@click.option("--limit", "-l", default=50, show_default=True, type=click.IntRange(min=1),
              help="Number of commits to display")
def log(repo_path: str, limit: int):
    """Print a repository's most recent commits across all refs."""
    async def run():
        return await RepositoryReader().load_baseline(repo_path, limit)

    try:
        commits = asyncio.run(run())
    except RepoTrackerError as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        sys.exit(1)

    if not commits:
        console.print("[yellow]No commits found[/yellow]")
        return
    display_commits(repo_path, commits, limit)


@cli.command()
@click.option("--repo", "-r", "repo_path", required=True, help="Absolute repository path")
@click.option("--event", "-e", "event", required=True,
              type=click.Choice([kind.value for kind in ChangeKind]), help="Action kind")
@click.option("--hash", "commit_hash", help="Commit hash produced by the action")
@click.option("--ref", help="Checked-out ref")
@click.option("--remote", help="Remote pushed to")
@click.option("--branch", help="Branch pushed")
@click.option("--message", "-m", help="Commit subject")
@click.option("--port", type=int, help="Push channel port")
def notify(repo_path: str, event: str, commit_hash: Optional[str], ref: Optional[str],
           remote: Optional[str], branch: Optional[str], message: Optional[str],
           port: Optional[int]):
    """Send one hook notification to a running tracker."""
    payload = {
        "repo": repo_path,
        "event": event,
        "hash": commit_hash,
        "ref": ref,
        "remote": remote,
        "branch": branch,
        "message": message,
    }
    payload = {key: value for key, value in payload.items() if value is not None}

    async def run():
        async with PushChannelClient(push_port=port) as client:
            return await client.send_event(payload)

    asyncio.run(run())
    console.print(f"[green]✅ Sent {event} notification for {repo_path}[/green]")


@cli.command()
@click.option("--limit", "-l", default=None, type=int, help="Maximum entries to list")
def recent(limit: Optional[int]):
    """List recently tracked repositories."""
    try:
        paths = RepositoryStore().recent_repositories(limit)
    except SQLAlchemyError as e:
        console.print(f"[red]❌ Error reading recent repositories: {e}[/red]")
        sys.exit(1)

    if not paths:
        console.print("[yellow]No recent repositories[/yellow]")
        return

    table = Table(title="Recent Repositories", show_header=True, header_style="bold magenta")
    table.add_column("#", style="cyan", width=3)
    table.add_column("Path", style="green")
    for index, path in enumerate(paths, start=1):
        table.add_row(str(index), escape(path))
    console.print(table)


@cli.command()
def status():
    """Check whether a tracker is running."""
    async def run():
        async with PushChannelClient() as client:
            return await client.health()

    health = asyncio.run(run())
    if health["push"] is None and health["subscriber"] is None:
        console.print("[red]❌ Tracker is not running[/red]")
        sys.exit(1)

    for name in ("push", "subscriber"):
        if health[name] is None:
            console.print(f"[yellow]⚠️  {name.capitalize()} channel unavailable[/yellow]")
        else:
            console.print(f"[green]✅ {name.capitalize()} channel is running[/green]")

    subscriber = health["subscriber"] or {}
    if subscriber:
        console.print(f"[dim]Repository: {escape(subscriber.get('repository') or 'none')}[/dim]")
        if subscriber.get("repository"):
            console.print(f"[dim]Branch: {escape(subscriber.get('branch') or 'HEAD')}[/dim]")
            console.print(f"[dim]Commits: {subscriber.get('commits', 0)}[/dim]")
        console.print(f"[dim]Subscribers: {subscriber.get('subscribers', 0)}[/dim]")
        for channel in subscriber.get("degraded", []):
            console.print(f"[yellow]⚠️  {channel.capitalize()} unavailable[/yellow]")


if __name__ == "__main__":
    cli()

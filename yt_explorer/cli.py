from __future__ import annotations

import sys
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from .config import load_config, get_youtube_config, get_download_config
from .database.repository import Repository
from .errors import YTExplorerError
from .ingestion.sync import SyncOrchestrator
from .ingestion.youtube_client import YouTubeClient
from .media.downloader import DownloadManager
from .utils.csv_export import comments_csv_filename, write_comments_csv
from .utils.logging_config import setup_logging

console = Console()
logger = logging.getLogger(__name__)


def _build_downloader(config: dict) -> DownloadManager:
    dl_cfg = get_download_config(config)
    return DownloadManager(
        dl_cfg["path"],
        yt_dlp_path=dl_cfg["yt_dlp_path"],
        timeout=dl_cfg["timeout_seconds"],
    )


def _build_orchestrator(config: dict, repo: Repository, on_event=None,
                        with_source: bool = True) -> SyncOrchestrator:
    """Construct the sync orchestrator from config."""
    yt_cfg = get_youtube_config(config)
    dl_cfg = get_download_config(config)

    source = None
    if with_source:
        if not yt_cfg["channel_id"]:
            raise click.UsageError("YOUTUBE_CHANNEL_ID is not set")
        source = YouTubeClient(
            yt_cfg["api_key"],
            requests_per_minute=yt_cfg["requests_per_minute"],
            max_retries=yt_cfg["max_retries"],
            timeout=yt_cfg["timeout"],
        )

    return SyncOrchestrator(
        repo,
        source,
        yt_cfg["channel_id"],
        downloader=_build_downloader(config),
        download_on_sync=dl_cfg["download_on_sync"],
        on_event=on_event,
    )


def _print_event(event: dict):
    """Render orchestrator progress events."""
    kind = event["event"]
    if kind == "channel":
        console.print(f"[bold]{event['title']}[/bold] ({event['video_count']} videos)")
    elif kind == "videos_page":
        console.print(
            f"  Videos: {event['processed']} processed "
            f"({event['added']} new, {event['updated']} updated)"
        )
    elif kind == "new_video":
        console.print(f"  [green]NEW[/green] {event['video'][:60]}")
    elif kind == "comments":
        console.print(f"  [dim]Comments {event['index']}/{event['total']}:[/dim] {event['video'][:60]}")
    elif kind == "download":
        console.print(f"  [cyan]DOWNLOAD[/cyan] {event['index']}/{event['total']} {event['video'][:60]}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """YT Explorer - Mirror a YouTube channel locally."""
    ctx.ensure_object(dict)
    config = load_config()
    if verbose:
        config["log_level"] = "DEBUG"
    setup_logging(config.get("log_file"), config["log_level"])
    ctx.obj["config"] = config


@cli.command()
@click.option("--full", is_flag=True, help="Re-fetch every video and all comments")
@click.pass_context
def sync(ctx, full):
    """Sync the configured channel into the local database.

    \b
    Examples:
        ytx sync            # New videos + refreshed statistics
        ytx sync --full     # Everything, including all comments
    """
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        orchestrator = _build_orchestrator(config, repo, on_event=_print_event)
        result = orchestrator.full_sync() if full else orchestrator.incremental_sync()
    except (YTExplorerError, ValueError) as e:
        console.print(f"[red]Error:[/red] Sync failed: {e}")
        sys.exit(1)
    finally:
        repo.close()

    console.print()
    console.print(f"[bold]{result.mode.capitalize()} sync complete[/bold] (run {result.run_id})")
    console.print(str(result))
    for video_id, error in result.comment_failures:
        console.print(f"  [yellow]SKIP[/yellow] comments for {video_id}: {error[:80]}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show library statistics and the latest sync run."""
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        stats = repo.get_stats()
        channel = repo.get_channel()
    finally:
        repo.close()

    table = Table(title="YT Explorer Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Channel", channel.title if channel else "-")
    table.add_row("Videos", str(stats["videos"]))
    table.add_row("  downloaded", str(stats["downloaded_videos"]))
    table.add_row("Comments", str(stats["comments"]))
    table.add_row("  replies", str(stats["replies"]))

    latest = stats["latest_sync"]
    if latest:
        table.add_row("Last sync", f"{latest['status']} at {(latest['started_at'] or '')[:19]}")
        if latest.get("error"):
            table.add_row("  error", latest["error"][:60])
    else:
        table.add_row("Last sync", "never")

    console.print(table)


@cli.command()
@click.option("--limit", "-n", type=int, default=20, help="Max videos to list")
@click.option("--offset", type=int, default=0, help="Skip this many videos")
@click.pass_context
def videos(ctx, limit, offset):
    """List stored videos, newest first."""
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        video_list = repo.list_videos(limit=limit, offset=offset)
        total = repo.count_videos()
    finally:
        repo.close()

    if not video_list:
        console.print("[yellow]No videos stored yet.[/yellow]")
        console.print("Fetch them with: [bold]ytx sync --full[/bold]")
        return

    table = Table(title=f"Videos ({offset + 1}-{offset + len(video_list)} of {total})")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Published")
    table.add_column("Views", justify="right")
    table.add_column("Comments", justify="right")
    table.add_column("Local", justify="center")

    for v in video_list:
        table.add_row(
            v.id,
            v.title[:60],
            (v.published_at or "")[:10],
            str(v.view_count),
            str(v.comment_count),
            "[green]yes[/green]" if v.local_path else "",
        )

    console.print(table)


@cli.command()
@click.argument("video_id")
@click.option("--limit", "-n", type=int, default=50, help="Max comments to show")
@click.pass_context
def comments(ctx, video_id, limit):
    """Show stored comments for a video."""
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        video = repo.require_video(video_id)
        comment_list = repo.list_comments_for_video(video_id, limit=limit)
    except YTExplorerError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        repo.close()

    console.print(f"[bold]{video.title}[/bold]")
    if not comment_list:
        console.print("[yellow]No comments stored for this video.[/yellow]")
        return

    for c in comment_list:
        indent = "    " if c.is_reply else ""
        replies = f", {c.total_reply_count} replies" if c.total_reply_count else ""
        console.print(
            f"{indent}[cyan]{c.author_display_name}[/cyan] "
            f"[dim]({c.like_count} likes{replies})[/dim]"
        )
        console.print(f"{indent}  {c.text_original}", markup=False)


@cli.command("export-comments")
@click.argument("video_id")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
              help="CSV file to write (default: <title>_comments.csv)")
@click.pass_context
def export_comments(ctx, video_id, output):
    """Export a video's comments to CSV."""
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        video = repo.require_video(video_id)
        comment_list = repo.list_comments_for_video(video_id)
    except YTExplorerError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        repo.close()

    out_path = Path(output or comments_csv_filename(video.title))
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        count = write_comments_csv(f, comment_list)

    console.print(f"[green]Exported {count} comments to[/green] {out_path}")


@cli.command()
@click.argument("query")
@click.option("--comments", "in_comments", is_flag=True, help="Search comments instead of videos")
@click.option("--limit", "-n", type=int, default=10, help="Max results")
@click.pass_context
def search(ctx, query, in_comments, limit):
    """Full-text search over videos or comments.

    \b
    Examples:
        ytx search "pasta sauce"
        ytx search "thank you" --comments -n 20
    """
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        if in_comments:
            results = repo.search_comments(query, limit=limit)
        else:
            results = repo.search_videos(query, limit=limit)
    finally:
        repo.close()

    if not results:
        console.print(f"[yellow]No results for:[/yellow] {query}")
        return

    if in_comments:
        table = Table(title=f"Comments matching: {query}")
        table.add_column("Video")
        table.add_column("Author")
        table.add_column("Comment")
        for c in results:
            table.add_row(c.video_id, c.author_display_name, c.text_original[:80])
    else:
        table = Table(title=f"Videos matching: {query}")
        table.add_column("ID")
        table.add_column("Title")
        table.add_column("Published")
        for v in results:
            table.add_row(v.id, v.title[:70], (v.published_at or "")[:10])

    console.print(table)


@cli.command()
@click.argument("video_id")
@click.pass_context
def download(ctx, video_id):
    """Download one video for offline viewing."""
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        video = repo.require_video(video_id)
        downloader = _build_downloader(config)
        with console.status(f"[bold]Downloading: {video.title[:60]}...[/bold]"):
            local_path = downloader.download(video.id, video.title)
        if local_path:
            repo.update_local_path(video.id, local_path)
    except YTExplorerError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        repo.close()

    if not local_path:
        task = downloader.status(video_id)
        console.print(f"[red]Error:[/red] Download failed: {task.error if task else 'unknown'}")
        sys.exit(1)
    console.print(f"[green]Downloaded:[/green] {local_path}")


@cli.command("download-all")
@click.option("--limit", "-n", type=int, default=None, help="Max videos to download")
@click.pass_context
def download_all(ctx, limit):
    """Download every stored video that has no local copy yet."""
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        orchestrator = _build_orchestrator(config, repo, on_event=_print_event, with_source=False)
        downloaded = orchestrator.download_missing(limit)
        failed = orchestrator.downloader.list_failed()
    finally:
        repo.close()

    console.print()
    console.print(f"[bold]Results:[/bold] {downloaded} downloaded, {len(failed)} failed")
    for video_id in failed:
        console.print(f"  [red]FAIL[/red] {video_id}")


@cli.command()
@click.pass_context
def reindex(ctx):
    """Rebuild the full-text search indexes from stored data."""
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])

    try:
        with console.status("[bold]Rebuilding search indexes...[/bold]"):
            repo.rebuild_search_index()
    except YTExplorerError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        repo.close()

    console.print("[green]Search indexes rebuilt.[/green]")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", "-p", type=int, default=5000, help="Port to bind to")
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.pass_context
def web(ctx, host, port, debug):
    """Start the JSON API server.

    \b
    Examples:
        ytx web                    # Start on localhost:5000
        ytx web -p 8080            # Start on port 8080
    """
    config = ctx.obj["config"]

    from .web.app import create_app
    app = create_app(config)

    console.print()
    console.print(Panel.fit(
        f"[bold green]YT Explorer API[/bold green]\n"
        f"[dim]Listening on:[/dim] [bold]http://{host}:{port}/api[/bold]",
        border_style="green",
    ))
    console.print()

    app.run(host=host, port=port, debug=debug)

"""Command line entry point for one-shot comment stance runs."""

from __future__ import annotations

import asyncio
import csv
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from comment_stance.dependencies import (
    get_analysis_service,
    get_comment_repository,
    get_orchestrator,
    get_settings,
)
from comment_stance.errors import InvalidVideoReferenceError
from comment_stance.logging_config import configure_cli_logging
from comment_stance.services.comment_analysis_service import CommentAnalysisReport
from comment_stance.services.local_classifier import classify_local_stance
from comment_stance.services.video_reference import extract_video_id

console = Console()

CSV_COLUMNS: tuple[str, ...] = ("comment_id", "username", "published_at", "stance", "text")


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default=None, help="Console log level (defaults to settings).")
def main(log_level: str | None) -> None:
    """Comment Stance - classify YouTube comments as agree, disagree or neutral."""
    configure_cli_logging(log_level or get_settings().log_level)


@main.command()
@click.argument("video_url")
@click.option("--title", "-t", default=None, help="Video title passed to the classifier.")
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the per-comment results to this CSV file.",
)
def analyze(video_url: str, title: str | None, csv_path: Path | None) -> None:
    """Fetch and classify the comments of a video."""
    service = get_analysis_service()
    try:
        report = asyncio.run(service.analyze(video_url, title))
    except InvalidVideoReferenceError as exc:
        raise click.BadParameter(str(exc), param_hint="VIDEO_URL") from exc

    _print_report(report)
    if csv_path is not None:
        rows = write_report_csv(report, csv_path)
        console.print(f"[green]Wrote {rows} rows to[/green] {csv_path}")


@main.command()
@click.argument("text")
@click.option("--title", "-t", default="", help="Video title used as classification context.")
@click.option("--local-only", is_flag=True, help="Skip the remote classifier.")
def classify(text: str, title: str, local_only: bool) -> None:
    """Classify a single comment."""
    if local_only:
        console.print(f"{classify_local_stance(text, title).value} [dim](local)[/dim]")
        return

    result = asyncio.run(get_orchestrator().classify_with_metadata(text, title))
    console.print(f"{result.stance.value} [dim]({result.source})[/dim]")


@main.command()
@click.argument("video_url")
@click.option("--limit", "-n", default=20, show_default=True, help="Maximum rows to show.")
def history(video_url: str, limit: int) -> None:
    """Show stored classifications for a video, newest first."""
    try:
        video_id = extract_video_id(video_url)
    except InvalidVideoReferenceError as exc:
        raise click.BadParameter(str(exc), param_hint="VIDEO_URL") from exc

    repository = get_comment_repository()
    if repository is None:
        raise click.ClickException("Persistence is disabled; nothing is stored.")

    stored = repository.list_for_video(video_id, limit=limit)
    if not stored:
        console.print(f"No stored comments for {video_id}.")
        return

    table = Table(title=f"Stored comments for {video_id}")
    table.add_column("Comment")
    table.add_column("User")
    table.add_column("Stance")
    table.add_column("Source")
    table.add_column("Stored at")
    for item in stored:
        table.add_row(
            item.record.comment_id,
            item.record.masked_username,
            item.record.stance,
            item.record.stance_source,
            item.created_at,
        )
    console.print(table)


def write_report_csv(report: CommentAnalysisReport, path: Path) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(CSV_COLUMNS)
        for comment in report.comments:
            writer.writerow(
                (
                    comment.comment_id,
                    comment.username,
                    comment.published_at,
                    comment.stance.value,
                    comment.text,
                )
            )
    return len(report.comments)


def _print_report(report: CommentAnalysisReport) -> None:
    summary = report.summary
    console.print(
        f"\n[bold]{report.video_title}[/bold] ({report.video_id}): "
        f"{summary.total_comments} comments"
    )

    distribution = Table(title="Stance distribution")
    distribution.add_column("Stance")
    distribution.add_column("Comments", justify="right")
    for stance, count in summary.stance_distribution.items():
        distribution.add_row(stance, str(count))
    console.print(distribution)

    if summary.monthly_distribution:
        months = Table(title="Comments per month")
        months.add_column("Month")
        months.add_column("Comments", justify="right")
        for month, count in sorted(summary.monthly_distribution.items()):
            months.add_row(month, str(count))
        console.print(months)

    if summary.keywords:
        console.print(f"[bold]Keywords:[/bold] {', '.join(summary.keywords)}")
    else:
        console.print("[bold]Keywords:[/bold] (none)")


if __name__ == "__main__":
    main()

"""
Command-line entry point.

Usage:
    debatelens analyze-text debate.txt --speakers "Alice Rossi" "Bob Bianchi" --topic "Nuclear power"
    debatelens analyze-file recording.mp4 --speakers Alice Bob --language it
    debatelens analyze-url https://www.youtube.com/watch?v=... --speakers Alice Bob
    debatelens status <id> | regenerate <id> | delete <id> | list | stats | check

Analyses run in the background of this process; the analyze commands wait
for the job to finish and print the results.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from debatelens.config import configure_logging, load_settings
from debatelens.errors import DebateLensError, InputValidationError
from debatelens.jobs import JobService
from debatelens.models import CATEGORIES, JobSnapshot, JobStatus
from debatelens.store import SqlAnalysisStore

log = logging.getLogger(__name__)

console = Console(width=120)

_STATUS_STYLE = {
    JobStatus.PENDING: "dim",
    JobStatus.PROCESSING: "yellow",
    JobStatus.COMPLETED: "green",
    JobStatus.ERROR: "red",
}


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def print_snapshot(snapshot: JobSnapshot) -> None:
    style = _STATUS_STYLE[snapshot.status]
    console.print(Panel(
        f"[bold]{snapshot.title}[/bold]\n"
        f"Topic: {snapshot.topic or '-'}\n"
        f"Participants: {', '.join(snapshot.speakers)}\n"
        f"Status: [{style}]{snapshot.status.value}[/{style}]",
        title=f"Analysis {snapshot.id}",
        border_style=style,
    ))

    if snapshot.status is JobStatus.ERROR:
        console.print(f"  ❌ [red]{snapshot.error_message}[/red]\n")
        return
    if snapshot.results is None:
        return

    results = snapshot.results

    table = Table(title="Scores", show_header=True)
    table.add_column("Speaker", width=24, style="bold")
    for key, (label, _) in CATEGORIES.items():
        table.add_column(label, justify="center")
    table.add_column("AVG", justify="center", style="bold")
    for a in results.speaker_analyses:
        table.add_row(a.speaker, *(f"{a.scores[k]:.1f}" for k in CATEGORIES), f"{a.average:.1f}")
    console.print(table)

    for a in results.speaker_analyses:
        body = [a.overall_assessment, ""]
        body += [f"[green]+[/green] {h}" for h in a.highlights]
        body += [f"[yellow]→[/yellow] {i}" for i in a.improvements]
        console.print(Panel("\n".join(body), title=f"[bold]{a.speaker}[/bold]", border_style="blue"))

    comparison = results.comparison
    if comparison is not None:
        lines = [f"🏆 Overall: [bold]{comparison.winner_overall}[/bold]"]
        for key, name in comparison.category_winners.items():
            lines.append(f"   {CATEGORIES[key][0]}: {name}")
        if comparison.summary:
            lines += ["", comparison.summary]
        lines += [f"  • {d}" for d in comparison.key_differences]
        console.print(Panel("\n".join(lines), title="Comparison", border_style="magenta"))

    if results.transcript is not None:
        t = results.transcript
        duration = f"{t.duration:.0f}s" if t.duration else "n/a"
        console.print(
            f"  [dim]Transcript: {len(t.text)} chars · language {t.language} · "
            f"duration {duration} · {t.segment_count} segment(s)[/dim]\n"
        )


def save_json(snapshot: JobSnapshot, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(snapshot.model_dump(mode="json"), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    console.print(f"  💾 Results saved to [bold cyan]{path}[/bold cyan]\n")
    return path


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def read_source_text(source: str) -> str:
    """Transcript text from a file path, or stdin for '-'."""
    if str(source) == "-":
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InputValidationError(f"Cannot read transcript {source}: {e}") from e


async def _finish(service: JobService, job_id: str, output: Optional[Path]) -> int:
    console.print(f"  ⏳ Analysis [bold]{job_id}[/bold] is processing…")
    await service.scheduler.wait(job_id)
    snapshot = await service.status(job_id)
    print_snapshot(snapshot)
    if output is not None:
        save_json(snapshot, output)
    return 0 if snapshot.status is JobStatus.COMPLETED else 1


async def _dispatch(args: argparse.Namespace, service: JobService) -> int:
    if args.command.startswith("analyze-"):
        common = {"topic": args.topic, "title": args.title, "language": args.language}

    if args.command == "analyze-text":
        text = read_source_text(args.source)
        job = await service.submit_text(text, args.speakers, **common)
        return await _finish(service, job.id, args.output)

    if args.command == "analyze-file":
        job = await service.submit_file(Path(args.source), args.speakers, **common)
        return await _finish(service, job.id, args.output)

    if args.command == "analyze-url":
        job = await service.submit_url(args.source, args.speakers, **common)
        return await _finish(service, job.id, args.output)

    if args.command == "regenerate":
        job = await service.regenerate(args.job_id)
        return await _finish(service, job.id, args.output)

    if args.command == "status":
        snapshot = await service.status(args.job_id)
        print_snapshot(snapshot)
        if args.output is not None:
            save_json(snapshot, args.output)
        return 0

    if args.command == "delete":
        await service.delete(args.job_id)
        console.print(f"  🗑️  Deleted analysis {args.job_id}")
        return 0

    if args.command == "list":
        status = JobStatus(args.status) if args.status else None
        jobs, total = await service.list_jobs(page=args.page, limit=args.limit, status=status)
        table = Table(title=f"Analyses (page {args.page}, {total} total)", show_header=True)
        table.add_column("ID", width=36)
        table.add_column("Title", width=30)
        table.add_column("Source", width=14)
        table.add_column("Status", width=11)
        table.add_column("Created", width=19)
        for job in jobs:
            style = _STATUS_STYLE[job.status]
            table.add_row(
                job.id, job.title, job.source_kind.value,
                f"[{style}]{job.status.value}[/{style}]",
                f"{job.created_at:%Y-%m-%d %H:%M:%S}",
            )
        console.print(table)
        return 0

    if args.command == "stats":
        counts = await service.store.stats()
        table = Table(title="Analyses by status", show_header=True)
        table.add_column("Status")
        table.add_column("Count", justify="right")
        for status, count in counts.items():
            table.add_row(status, str(count))
        console.print(table)
        return 0

    if args.command == "check":
        health = await service.health()
        for name, value in health.items():
            mark = ("✅" if value else "❌") if isinstance(value, bool) else "•"
            console.print(f"  {mark} {name}: {value}")
        return 0 if health["reasoning"] and health["transcription"] else 1

    raise ValueError(f"Unknown command {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="debatelens", description="Rhetorical analysis of debates")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, source_help in (
        ("analyze-text", "Transcript text file ('-' for stdin)"),
        ("analyze-file", "Audio or video file"),
        ("analyze-url", "Video URL"),
    ):
        p = sub.add_parser(name, help=f"Analyse a debate from: {source_help.lower()}")
        p.add_argument("source", help=source_help)
        p.add_argument("--speakers", nargs="+", required=True, help="Participant names, in order")
        p.add_argument("--topic", default="", help="Debate topic")
        p.add_argument("--title", help="Analysis title")
        p.add_argument("--language", help="Language code of the speech (default from WHISPER_LANGUAGE)")
        p.add_argument("--output", type=Path, help="Write the results as JSON to this path")

    for name in ("status", "regenerate"):
        p = sub.add_parser(name, help=f"{name.capitalize()} an analysis")
        p.add_argument("job_id")
        p.add_argument("--output", type=Path, help="Write the results as JSON to this path")

    p = sub.add_parser("delete", help="Delete an analysis and its results")
    p.add_argument("job_id")

    p = sub.add_parser("list", help="List analyses")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--status", choices=[s.value for s in JobStatus])

    sub.add_parser("stats", help="Count analyses by status")
    sub.add_parser("check", help="Check the reasoning backend and Whisper")
    return parser


async def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    settings = load_settings()
    store = SqlAnalysisStore.for_path(settings.database_path)
    await store.init()
    service = JobService.from_settings(settings, store)

    try:
        return await _dispatch(args, service)
    except DebateLensError as e:
        console.print(f"  ❌ [red]{e}[/red]")
        return 2
    finally:
        await service.scheduler.shutdown()
        await store.close()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

"""
Typer CLI for the studyforge service.

Commands:
    studyforge db init                   - Initialize database tables
    studyforge worker run --type TYPE    - Poll and execute jobs of one type
    studyforge jobs enqueue-collection   - Create a collection from text files and enqueue it
    studyforge jobs show JOB_ID          - Show job status
    studyforge jobs list                 - Show recent jobs
    studyforge jobs cancel JOB_ID        - Cancel a pending or running job
    studyforge jobs estimate CHARS       - Target counts and duration for a document size
    studyforge review flashcard          - Submit a flashcard review
    studyforge review quiz               - Submit a quiz answer

Usage:
    studyforge worker run --type collection-generation
    studyforge worker run --type generation --once
    studyforge jobs enqueue-collection --user u1 --title "Biology" --text-file notes.txt
"""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from studyforge.errors import StudyForgeError

app = typer.Typer(
    help="studyforge CLI: study set generation workers and learning schedulers",
    no_args_is_help=True,
)

console = Console()


def configure_logging(level: str | None = None) -> None:
    """Route loguru to stderr and, when configured, a rotating log file."""
    settings = get_settings()
    level = level or settings.log_level
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level=level, rotation="10 MB", retention="14 days")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """studyforge command line."""
    configure_logging("DEBUG" if verbose else None)


# ========================================
# DB Commands
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Create all tables from the SQLAlchemy models.

    Safe to run multiple times.
    """
    from studyforge.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# Worker Commands
# ========================================

worker_app = typer.Typer(help="Job workers")
app.add_typer(worker_app, name="worker")


@worker_app.command("run")
def worker_run(
    job_type: str = typer.Option(..., "--type", "-t", help="generation | collection-generation | document-generation"),
    once: bool = typer.Option(False, "--once", help="Process pending jobs, then exit"),
) -> None:
    """Poll the job store and execute jobs of one type."""
    from studyforge.generation.extraction import storage_from_settings
    from studyforge.generation.invoker import generator_from_settings
    from studyforge.generation.persister import ArtifactPersister
    from studyforge.jobs.handlers import build_handlers
    from studyforge.jobs.store import JobStore
    from studyforge.jobs.types import JobType
    from studyforge.jobs.worker import JobWorker, WorkerConfig

    try:
        selected = JobType(job_type)
    except ValueError:
        rprint(f"[red]Unknown job type:[/red] {job_type}")
        raise typer.Exit(code=1)

    settings = get_settings()
    if not settings.has_ai_configured():
        rprint("[red]GEMINI_API_KEY is not set[/red]")
        raise typer.Exit(code=1)

    handlers = build_handlers(
        generator_from_settings(),
        storage_from_settings(),
        ArtifactPersister(),
        settings.corpus_char_limit,
    )
    worker = JobWorker(selected, JobStore(), handlers, WorkerConfig.from_settings())

    if once:
        processed = worker.drain()
        rprint(f"[green]✓[/green] Processed {processed} job(s)")
        rprint(worker.get_status_line())
        return

    def _shutdown(signum, frame):
        worker.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    worker.run()
    rprint(worker.get_status_line())


# ========================================
# Job Commands
# ========================================

jobs_app = typer.Typer(help="Enqueue and inspect jobs")
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("enqueue-collection")
def jobs_enqueue_collection(
    user: str = typer.Option(..., "--user", "-u", help="Owner user id"),
    title: str = typer.Option(..., "--title", help="Collection title"),
    text_files: list[Path] = typer.Option(..., "--text-file", "-f", help="Source text file (repeatable)"),
    tags: Optional[list[str]] = typer.Option(None, "--tag", help="Collection tag (repeatable)"),
) -> None:
    """Create a processing collection from local text files and enqueue its generation."""
    from studyforge.db.database import session_scope
    from studyforge.db.models import Collection, CollectionSource
    from studyforge.jobs.store import JobStore
    from studyforge.jobs.types import (
        CollectionGenerationJobPayload,
        CollectionSourcePayload,
        JobType,
    )

    sources: list[CollectionSourcePayload] = []
    for path in text_files:
        if not path.is_file():
            rprint(f"[red]File not found:[/red] {path}")
            raise typer.Exit(code=1)
        sources.append(
            CollectionSourcePayload(title=path.stem, raw_text=path.read_text(encoding="utf-8"), tags=[])
        )

    with session_scope() as session:
        collection = Collection(owner_id=user, title=title, tags=list(tags or []), status="processing")
        collection.sources = [CollectionSource(title=source.title, tags=[]) for source in sources]
        session.add(collection)
        session.flush()
        collection_id = collection.id

    payload = CollectionGenerationJobPayload(
        collection_id=collection_id,
        user_id=user,
        title=title,
        tags=list(tags or []),
        sources=sources,
    )
    try:
        job = JobStore().create_job(user, JobType.COLLECTION_GENERATION, payload)
    except StudyForgeError as exc:
        rprint(f"[red]Could not enqueue:[/red] {exc}")
        raise typer.Exit(code=1)

    rprint(f"[green]✓[/green] Collection [cyan]{collection_id}[/cyan] queued as job [cyan]{job.id}[/cyan]")


@jobs_app.command("show")
def jobs_show(job_id: str = typer.Argument(..., help="Job id")) -> None:
    """Show the status view of a job."""
    from studyforge.jobs.store import JobStore

    view = JobStore().status_view(job_id)
    if view is None:
        rprint(f"[red]Job not found:[/red] {job_id}")
        raise typer.Exit(code=1)
    console.print_json(json.dumps(view, default=str))


@jobs_app.command("list")
def jobs_list(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Filter by owner"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows"),
) -> None:
    """Show recent jobs."""
    from studyforge.jobs.store import JobStore

    jobs = JobStore().list_jobs(owner_id=user, status=status, limit=limit)
    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Created")
    table.add_column("Error", style="red")

    for job in jobs:
        progress = f"{job.progress:.0%}" if job.progress is not None else "-"
        table.add_row(job.id, job.type, job.status, progress, str(job.created_at)[:19], job.error or "")

    console.print(table)


@jobs_app.command("cancel")
def jobs_cancel(
    job_id: str = typer.Argument(..., help="Job id"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Cancellation reason"),
) -> None:
    """Cancel a pending or running job."""
    from studyforge.jobs.store import JobStore

    if JobStore().cancel_job(job_id, reason):
        rprint(f"[green]✓[/green] Job {job_id} cancelled")
    else:
        rprint(f"[yellow]Job {job_id} could not be cancelled[/yellow]")
        raise typer.Exit(code=1)


@jobs_app.command("estimate")
def jobs_estimate(chars: int = typer.Argument(..., help="Document size in characters")) -> None:
    """Target flashcard/quiz counts and expected duration for a document size."""
    from studyforge.generation.corpus import (
        calculate_optimal_counts,
        estimate_generation_time,
        format_time,
    )

    flashcards, quiz = calculate_optimal_counts(chars)
    rprint(f"Flashcards: [cyan]{flashcards}[/cyan]")
    rprint(f"Quiz questions: [cyan]{quiz}[/cyan]")
    rprint(f"Estimated time: [cyan]{format_time(estimate_generation_time(chars))}[/cyan]")


# ========================================
# Review Commands
# ========================================

review_app = typer.Typer(help="Submit reviews and answers")
app.add_typer(review_app, name="review")


@review_app.command("flashcard")
def review_flashcard(
    user: str = typer.Option(..., "--user", "-u"),
    flashcard_id: str = typer.Option(..., "--flashcard", help="Flashcard id"),
    quality: str = typer.Option(..., "--quality", "-q", help="easy | medium | hard"),
) -> None:
    """Record a flashcard review and show the next review date."""
    from studyforge.study.review_service import ReviewService

    try:
        result = ReviewService().submit_flashcard_review(user, flashcard_id, quality)
    except StudyForgeError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    rprint(f"[green]✓[/green] Box {result['box']}, next review {result['nextReview']}")


@review_app.command("quiz")
def review_quiz(
    user: str = typer.Option(..., "--user", "-u"),
    question_id: str = typer.Option(..., "--question", help="Quiz question id"),
    correct: bool = typer.Option(..., "--correct/--incorrect", help="Answer outcome"),
    answer: Optional[str] = typer.Option(None, "--answer", help="Learner's answer"),
    seconds: Optional[int] = typer.Option(None, "--seconds", help="Time spent"),
    session_id: Optional[str] = typer.Option(None, "--session", help="Existing quiz session id"),
) -> None:
    """Record a quiz answer."""
    from studyforge.study.review_service import ReviewService

    try:
        result = ReviewService().submit_quiz_answer(
            user,
            question_id,
            correct,
            user_answer=answer,
            time_spent_seconds=seconds,
            session_id=session_id,
        )
    except StudyForgeError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    rprint(f"[green]✓[/green] Answer {result['answerId']} in session {result['sessionId']}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

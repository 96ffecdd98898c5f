"""
Gradeflow CLI Application.

Grades submission files, runs them as observable jobs and reports on the
grading audit trail.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gradeflow.attempt import AttemptGradeResult, AttemptGrader, AttemptSubmission
from gradeflow.audit import GradingAuditService
from gradeflow.config import Settings, get_settings
from gradeflow.consistency import GradingConsistencyService
from gradeflow.jobs import GradingJobManager, JobNotFoundError, JobStatusStream
from gradeflow.judgment import JudgmentService, LLMError
from gradeflow.localization import LocalizationService
from gradeflow.logging_setup import setup_logging
from gradeflow.models import EventType, UserRole, utcnow
from gradeflow.orchestrator import QuestionNotFoundError, ResponseOrchestrator, SubmissionError
from gradeflow.store import DataStore, SqlDataStore, StoreError
from gradeflow.strategies import StrategyError, build_default_registry

# Create Typer app
app = typer.Typer(
    name="gradeflow",
    help="Grading orchestration for assignment question responses",
    add_completion=False,
)

console = Console()


@dataclass
class Services:
    """The wired-up grading engine."""

    store: DataStore
    judgment: JudgmentService
    audit: GradingAuditService
    consistency: GradingConsistencyService
    orchestrator: ResponseOrchestrator
    grader: AttemptGrader
    jobs: GradingJobManager


def create_services(settings: Settings, store: DataStore) -> Services:
    """Wire every grading component on top of a data store."""
    localization = LocalizationService()
    judgment = JudgmentService(settings)
    audit = GradingAuditService(store, settings)
    consistency = GradingConsistencyService(store, settings)
    orchestrator = ResponseOrchestrator(
        store,
        build_default_registry(judgment, localization, settings=settings),
        audit,
        consistency,
        localization,
        settings,
    )
    return Services(
        store=store,
        judgment=judgment,
        audit=audit,
        consistency=consistency,
        orchestrator=orchestrator,
        grader=AttemptGrader(store, orchestrator),
        jobs=GradingJobManager(store, settings=settings),
    )


async def _open_store(settings: Settings) -> SqlDataStore:
    store = SqlDataStore(settings.database_url)
    await store.create_tables()
    return store


def _load_submission(path: Path) -> AttemptSubmission:
    if not path.exists():
        console.print(f"[red]Error:[/red] Submission file not found: {path}")
        raise typer.Exit(1)
    submission = AttemptSubmission.model_validate_json(path.read_text(encoding="utf-8"))
    return submission.model_copy(update={"role": UserRole.AUTHOR, "attempt_id": None})


def _run(coroutine):  # type: ignore[no-untyped-def]
    """Run a coroutine, mapping engine errors to a red message and exit code 1."""
    try:
        return asyncio.run(coroutine)
    except SubmissionError as e:
        console.print("[red]Submission Error:[/red] some question responses failed")
        for failure in e.failures:
            console.print(f"  • Question {failure.question_id}: {failure}")
        raise typer.Exit(1)
    except StrategyError as e:
        console.print(f"[red]Grading Error:[/red] {e}")
        raise typer.Exit(1)
    except QuestionNotFoundError as e:
        console.print(f"[red]Question Error:[/red] {e}")
        raise typer.Exit(1)
    except JobNotFoundError as e:
        console.print(f"[red]Job Error:[/red] {e}")
        raise typer.Exit(1)
    except LLMError as e:
        console.print(f"[red]LLM Error:[/red] {e}")
        raise typer.Exit(1)
    except StoreError as e:
        console.print(f"[red]Storage Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def grade(
    submission_file: Annotated[Path, typer.Argument(help="Path to the submission JSON file")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the result as JSON to this file"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show feedback for every question"),
    ] = False,
) -> None:
    """
    Grade a submission file as an author preview.

    Nothing is persisted for the learner; audit records are still written
    to the configured database.
    """
    settings = get_settings()
    setup_logging(settings)
    try:
        submission = _load_submission(submission_file)
    except ValidationError as e:
        console.print(f"[red]Invalid submission:[/red] {e}")
        raise typer.Exit(1)

    async def run() -> AttemptGradeResult:
        store = await _open_store(settings)
        try:
            services = create_services(settings, store)
            with console.status("Grading submission... (this may take a moment)"):
                return await services.grader.grade(submission)
        finally:
            await store.close()

    result = _run(run())
    _display_result(result, verbose)

    if output:
        output.write_text(result.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        console.print(f"\n[green]Result saved to:[/green] {output}")


@app.command()
def job(
    submission_file: Annotated[Path, typer.Argument(help="Path to the submission JSON file")],
) -> None:
    """
    Grade a submission as a background job and follow its status stream.
    """
    settings = get_settings()
    setup_logging(settings)
    try:
        submission = _load_submission(submission_file)
    except ValidationError as e:
        console.print(f"[red]Invalid submission:[/red] {e}")
        raise typer.Exit(1)

    async def run() -> None:
        store = await _open_store(settings)
        try:
            services = create_services(settings, store)
            grading_job = await services.jobs.create_job(
                submission.assignment_id, submission.user_id, submission.attempt_id
            )
            console.print(f"[bold]Started job {grading_job.id}[/bold]")
            services.jobs.start_job(
                grading_job, lambda progress: services.grader.grade(submission, progress)
            )

            stream = JobStatusStream(grading_job.id, store, services.jobs.channels, settings)  # type: ignore[arg-type]
            async for event in stream:
                _display_event(event.type, event.data.percentage, event.data.progress)
                if event.data.done and event.data.result is not None:
                    console.print_json(json.dumps(event.data.result, default=str))

            await services.jobs.wait_for_all()
        finally:
            await store.close()

    _run(run())


@app.command()
def stats(
    days: Annotated[
        Optional[int],
        typer.Option("--days", "-d", help="Only include gradings from the last N days"),
    ] = None,
) -> None:
    """
    Show grading usage statistics from the audit trail.
    """
    settings = get_settings()
    setup_logging(settings)

    async def run() -> dict:
        store = await _open_store(settings)
        try:
            since = utcnow() - timedelta(days=days) if days else None
            return await GradingAuditService(store, settings).get_grading_usage_statistics(since=since)
        finally:
            await store.close()

    usage = _run(run())

    console.print(
        Panel(
            f"Total gradings: [bold]{usage['totalGradings']}[/bold]\n"
            f"Average points awarded: {usage['averagePointsAwarded']}\n"
            f"Error rate: {usage['errorRate'] * 100:.1f}%",
            title="Grading Usage",
        )
    )

    table = Table(title="Strategies")
    table.add_column("Strategy", style="cyan")
    table.add_column("Gradings", justify="right")
    for row in usage["strategiesByCount"]:
        table.add_row(row["strategy"], str(row["count"]))
    console.print(table)

    table = Table(title="Most Active Questions")
    table.add_column("Question", style="cyan")
    table.add_column("Gradings", justify="right")
    for row in usage["mostActiveQuestions"]:
        table.add_row(str(row["questionId"]), str(row["count"]))
    console.print(table)

    if usage["gradingsByDay"]:
        table = Table(title="Gradings by Day")
        table.add_column("Date")
        table.add_column("Gradings", justify="right")
        for row in usage["gradingsByDay"]:
            table.add_row(row["date"], str(row["count"]))
        console.print(table)


@app.command()
def issues(
    question_id: Annotated[int, typer.Argument(help="Question to analyse")],
) -> None:
    """
    Flag suspicious score patterns for a question.
    """
    settings = get_settings()
    setup_logging(settings)

    async def run() -> tuple:
        store = await _open_store(settings)
        try:
            audit = GradingAuditService(store, settings)
            consistency = GradingConsistencyService(store, settings)
            return (
                await audit.identify_grading_issues(question_id),
                await consistency.get_grading_statistics(question_id),
            )
        finally:
            await store.close()

    found, statistics = _run(run())

    console.print(
        Panel(
            f"Gradings: {statistics['totalGradings']}\n"
            f"Average: {statistics['averageScore']}%\n"
            f"Standard deviation: {statistics['standardDeviation']}",
            title=f"Question {question_id}",
        )
    )

    if not found:
        console.print("[green]✓ No grading issues found[/green]")
        return

    console.print("[yellow]⚠ Grading issues found:[/yellow]")
    for issue in found:
        color = "red" if issue.severity == "high" else "yellow"
        console.print(f"  • [{color}]{issue.severity}[/{color}] {issue.type}: {issue.description}")


@app.command()
def health() -> None:
    """
    Check if the grading system is operational.

    Verifies API connectivity and configuration.
    """
    try:
        settings = get_settings()
        console.print("[bold]Gradeflow Health Check[/bold]\n")

        console.print("[dim]Checking configuration...[/dim]")
        console.print(f"  Judge Base URL: {settings.judge_base_url}")
        console.print(f"  Judge Model: {settings.judge_model}")
        console.print(f"  Database: {settings.database_url}")

        console.print("\n[dim]Checking API connectivity...[/dim]")
        if asyncio.run(JudgmentService(settings).health_check()):
            console.print("[green]✓ API is reachable[/green]")
        else:
            console.print("[red]✗ API is not reachable[/red]")
            raise typer.Exit(1)

        console.print("\n[green]All systems operational[/green]")

    except (ValidationError, LLMError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _display_result(result: AttemptGradeResult, verbose: bool = False) -> None:
    """Display an attempt result as a score panel and per-question table."""
    percentage = result.grade * 100
    score_color = "green" if percentage >= 70 else "yellow" if percentage >= 50 else "red"
    console.print(
        Panel(
            f"[{score_color}][bold]{result.total_points_earned:g} / {result.total_possible_points:g}[/bold] "
            f"({percentage:.1f}%)[/{score_color}]",
            title="Final Score",
        )
    )

    table = Table(title="Questions")
    table.add_column("Question", style="cyan")
    table.add_column("Points", justify="right")
    if verbose:
        table.add_column("Feedback")

    for item in result.feedbacks_for_questions:
        points = "hidden" if item.total_points == -1 else f"{item.total_points:g}"
        row = [f"{item.question_id}: {(item.question or '')[:50]}", points]
        if verbose:
            row.append("\n".join(f.feedback for f in item.feedback))
        table.add_row(*row)

    console.print(table)


def _display_event(event_type: EventType, percentage: int | None, progress: str) -> None:
    colors = {
        EventType.UPDATE: "cyan",
        EventType.HEARTBEAT: "dim",
        EventType.FINALIZE: "green",
        EventType.ERROR: "red",
    }
    color = colors[event_type]
    shown = f"{percentage:>3}%" if percentage is not None else "   -"
    console.print(f"[{color}]{event_type.value:<9}[/{color}] {shown} {progress}")


if __name__ == "__main__":
    app()

"""
Typer CLI for the CQL Code Clinic exercise engine.

Commands:
    cql-clinic exercises list          - List all valid exercises
    cql-clinic exercises show ID       - Show one exercise
    cql-clinic exercises search        - Filter, sort and paginate exercises
    cql-clinic exercises recommend     - Recommend next exercises for a learner
    cql-clinic exercises analytics     - Collection distribution summary
    cql-clinic exercises validate      - Prerequisite graph and quality report
    cql-clinic run FILE                - Evaluate a .cql file in the sandbox

Usage:
    cql-clinic --source-dir data/exercises exercises list
    cql-clinic exercises search --difficulty beginner --tag syntax --sort-by title
    cql-clinic exercises recommend --completed whitespace-comments
    cql-clinic run exercise.cql --expect "A Decimal=3.14"
"""

import asyncio
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Optional, TypeVar

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cql_clinic.config import Settings, get_settings
from cql_clinic.exercises import (
    DirectoryExerciseSource,
    ExerciseService,
    ExerciseServiceError,
    NotFoundError,
    RecommendationOptions,
    SearchCriteria,
    UserProgress,
)
from cql_clinic.sandbox import (
    CQLExecutionRequest,
    CQLSandboxClient,
    SandboxError,
    score_against_reference,
)

app = typer.Typer(
    help="CQL Code Clinic: exercise catalogue, recommendations and CQL sandbox runner",
    no_args_is_help=True,
)
exercises_app = typer.Typer(help="Browse, search and validate exercises", no_args_is_help=True)
app.add_typer(exercises_app, name="exercises")

console = Console()

T = TypeVar("T")


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """Lazily builds the exercise service for the invoked command."""

    def __init__(self, source_dir: Optional[Path] = None):
        self.settings: Settings = get_settings()
        self.source_dir = source_dir
        self._service: Optional[ExerciseService] = None

    @property
    def service(self) -> ExerciseService:
        if self._service is None:
            source = DirectoryExerciseSource(self.source_dir) if self.source_dir else None
            self._service = ExerciseService(source=source, settings=self.settings)
        return self._service


def _context(ctx: typer.Context) -> CLIContext:
    if not isinstance(ctx.obj, CLIContext):
        ctx.obj = CLIContext()
    return ctx.obj


def _fail(message: str) -> None:
    rprint(f"[red]✗[/red] {message}")
    raise typer.Exit(code=1)


def _run(service: ExerciseService, operation: Coroutine[Any, Any, T]) -> T:
    """Run one service call in its own event loop, then release the source."""
    async def runner() -> T:
        try:
            return await operation
        finally:
            await service.close()

    return asyncio.run(runner())


def _exercise_table(title: str, exercises) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Difficulty")
    table.add_column("Type")
    table.add_column("Minutes", justify="right")
    for exercise in exercises:
        table.add_row(
            exercise.id,
            exercise.title,
            exercise.difficulty.value,
            exercise.type.value,
            str(exercise.estimated_time),
        )
    return table


@app.callback()
def main_callback(
    ctx: typer.Context,
    source_dir: Optional[Path] = typer.Option(
        None,
        "--source-dir",
        help="Load exercises from a directory of JSON files instead of the configured source",
    ),
) -> None:
    """CQL Code Clinic command-line interface."""
    ctx.obj = CLIContext(source_dir)


# ========================================
# EXERCISE COMMANDS
# ========================================


@exercises_app.command("list")
def exercises_list(ctx: typer.Context) -> None:
    """List every valid exercise."""
    service = _context(ctx).service
    try:
        exercises = _run(service, service.load_exercises())
    except ExerciseServiceError as exc:
        _fail(str(exc))

    console.print(_exercise_table(f"Exercises ({len(exercises)})", exercises))


@exercises_app.command("show")
def exercises_show(ctx: typer.Context, exercise_id: str = typer.Argument(..., help="Exercise ID")) -> None:
    """Show details of one exercise."""
    service = _context(ctx).service
    try:
        exercise = _run(service, service.get_exercise(exercise_id))
    except NotFoundError as exc:
        _fail(f"{exc}. Run 'cql-clinic exercises list' to see available IDs")
    except ExerciseServiceError as exc:
        _fail(str(exc))

    rprint(f"[bold]{exercise.title}[/bold] [dim]({exercise.id} v{exercise.version})[/dim]")
    rprint(exercise.description)
    rprint(f"  Difficulty:    {exercise.difficulty.value}")
    rprint(f"  Type:          {exercise.type.value}")
    rprint(f"  Estimated:     {exercise.estimated_time} min")
    rprint(f"  Prerequisites: {', '.join(exercise.prerequisites) or '-'}")
    rprint(f"  Concepts:      {', '.join(exercise.concepts) or '-'}")
    rprint(f"  Tags:          {', '.join(exercise.tags) or '-'}")
    rprint(f"  Hints:         {exercise.hint_count}")
    rprint(f"  Quality:       {exercise.quality_score}")


@exercises_app.command("search")
def exercises_search(
    ctx: typer.Context,
    query: str = typer.Option("", "--query", "-q", help="Text to find in titles, descriptions, instructions, concepts, tags"),
    difficulty: Optional[str] = typer.Option(None, "--difficulty", "-d"),
    exercise_type: Optional[str] = typer.Option(None, "--type", "-t"),
    concept: list[str] = typer.Option([], "--concept", "-c", help="Match any of these concepts"),
    tag: list[str] = typer.Option([], "--tag", help="Match any of these tags"),
    min_time: Optional[int] = typer.Option(None, "--min-time", help="Minimum estimated minutes"),
    max_time: Optional[int] = typer.Option(None, "--max-time", help="Maximum estimated minutes"),
    sort_by: Optional[str] = typer.Option(None, "--sort-by", help="title, difficulty, estimatedTime, created, modified, quality"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
) -> None:
    """Filter, sort and paginate exercises."""
    criteria = SearchCriteria(
        query=query,
        difficulty=difficulty,
        type=exercise_type,
        concepts=tuple(concept),
        tags=tuple(tag),
        estimated_time_min=min_time,
        estimated_time_max=max_time,
        sort_by=sort_by,
        sort_order="desc" if desc else "asc",
        limit=limit,
        offset=offset,
    )
    service = _context(ctx).service
    try:
        results = _run(service, service.search_exercises(criteria))
    except ExerciseServiceError as exc:
        _fail(str(exc))

    if not results:
        rprint("[yellow]No exercises match these criteria[/yellow]")
        return
    console.print(_exercise_table(f"Search results ({len(results)})", results))


@exercises_app.command("recommend")
def exercises_recommend(
    ctx: typer.Context,
    completed: list[str] = typer.Option([], "--completed", help="IDs of completed exercises"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
    include_completed: bool = typer.Option(False, "--include-completed"),
) -> None:
    """Recommend the next exercises for a learner."""
    progress = UserProgress(
        exercise_progress={exercise_id: {"completed": True} for exercise_id in completed}
    )
    options = RecommendationOptions(limit=limit, include_completed=include_completed)
    service = _context(ctx).service
    try:
        recommendations = _run(service, service.get_recommendations(progress, options))
    except ExerciseServiceError as exc:
        _fail(str(exc))

    if not recommendations:
        rprint("[yellow]No eligible exercises - complete prerequisites first[/yellow]")
        return

    table = Table(title="Recommended next")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Score", justify="right")
    table.add_column("Reason")
    for rec in recommendations:
        table.add_row(rec.exercise.id, rec.exercise.title, f"{rec.score:.1f}", rec.reason)
    console.print(table)


@exercises_app.command("analytics")
def exercises_analytics(ctx: typer.Context) -> None:
    """Show distribution counts for the exercise collection."""
    service = _context(ctx).service
    try:
        analytics = _run(service, service.get_exercise_analytics())
    except ExerciseServiceError as exc:
        _fail(str(exc))

    rprint(f"[bold]Total exercises:[/bold] {analytics.total}")
    rprint(f"[bold]Distinct concepts:[/bold] {analytics.total_concepts}")
    rprint(f"[bold]Average time:[/bold] {analytics.average_estimated_time} min")
    rprint(f"[bold]Recently added:[/bold] {analytics.recently_added}")

    for title, counts in (
        ("By difficulty", analytics.by_difficulty),
        ("By type", analytics.by_type),
        ("Quality", analytics.quality_distribution),
    ):
        table = Table(title=title)
        table.add_column("Key")
        table.add_column("Count", justify="right")
        for key, count in counts.items():
            table.add_row(key, str(count))
        console.print(table)


@exercises_app.command("validate")
def exercises_validate(ctx: typer.Context) -> None:
    """Check the prerequisite graph and content quality."""
    service = _context(ctx).service
    try:
        batch, report = _run(service, service.validate_collection())
    except ExerciseServiceError as exc:
        _fail(str(exc))

    summary = batch.summary
    rprint(
        f"[bold]Records:[/bold] {summary['total']} "
        f"([green]{summary['valid']} valid[/green], [red]{summary['invalid']} invalid[/red])"
    )
    rprint(
        f"[bold]Average quality:[/bold] {summary['average_quality']:.1f} "
        f"({summary['high_quality']} high, {summary['needs_improvement']} need improvement)"
    )
    for item in batch.results:
        if not item.valid:
            rprint(f"  [red]✗[/red] {item.id}: {'; '.join(item.validation.errors)}")
    for warning in report.warnings:
        rprint(f"  [yellow]![/yellow] {warning}")
    for error in report.errors:
        rprint(f"  [red]✗[/red] {error}")

    if not report.valid:
        raise typer.Exit(code=1)
    rprint("[green]✓[/green] Prerequisite graph is valid")


# ========================================
# SANDBOX COMMANDS
# ========================================


def _parse_expectations(pairs: list[str]) -> dict[str, str]:
    expected = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected NAME=VALUE, got '{pair}'", param_hint="--expect")
        expected[name.strip()] = value.strip()
    return expected


async def _run_cql(settings: Settings, code: str) -> list:
    async with CQLSandboxClient(**settings.get_sandbox_config()) as client:
        return await client.execute(CQLExecutionRequest(code=code, patient_id=settings.cql_patient_id))


@app.command("run")
def run_cql(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CQL file to evaluate"),
    expect: list[str] = typer.Option([], "--expect", "-e", help="Reference result as NAME=VALUE"),
) -> None:
    """Evaluate a CQL file in the remote sandbox."""
    settings = _context(ctx).settings
    expected = _parse_expectations(expect)
    code = file.read_text(encoding="utf-8")

    try:
        results = asyncio.run(_run_cql(settings, code))
    except SandboxError as exc:
        _fail(str(exc))

    table = Table(title=f"Results: {file.name}")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Result")
    for result in results:
        if result.is_error:
            table.add_row(escape(result.name or "-"), "[red]error[/red]", escape(f"{result.location or ''} {result.error}"))
        else:
            table.add_row(escape(result.name or "-"), result.result_type or "", escape(str(result.result)))
    console.print(table)

    if expected:
        score = score_against_reference(results, expected)
        colour = "green" if score.passed else "red"
        rprint(f"[{colour}]Score: {score.score:.0f}/100[/{colour}]")
        for name in score.mismatched:
            rprint(f"  [red]✗[/red] {name}: unexpected value")
        for name in score.missing:
            rprint(f"  [red]✗[/red] {name}: not defined")
        if not score.passed:
            raise typer.Exit(code=1)


# =============================================================================
# Entry Point
# =============================================================================

def main() -> None:
    """CLI entry point."""
    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level,
        format="<level>{message}</level>",
    )

    app()


if __name__ == "__main__":
    main()

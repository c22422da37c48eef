"""
Autograder CLI Application.

Provides a command-line interface for grading submissions, recording manual
scores and calculating final course grades against the configured Question
Store.
"""

import logging
from typing import Annotated, Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from autograder.aggregation import ScaleValidationError, ScaleValidator
from autograder.config import get_settings
from autograder.errors import GradingError, StorageError
from autograder.models import FinalGradeReport, ManualGradeReport, SubmissionGradingReport
from autograder.service import GradingService
from autograder.store.sql import SqlQuestionStore

# Create Typer app
app = typer.Typer(
    name="autograder",
    help="Automated grading engine for course assignments",
    add_completion=False,
)

console = Console()

JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Print the report as JSON"),
]


@app.callback()
def main(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """Configure logging before any command runs."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def init_db() -> None:
    """
    Create the Question Store schema.

    Creates all tables and seeds the standard question types. Safe to run
    more than once.
    """
    try:
        store = SqlQuestionStore.from_settings()
        store.create_schema()
        console.print("[green]✓ Question Store schema ready[/green]")
    except GradingError as e:
        _fail(e)


@app.command()
def grade(
    submission_id: Annotated[int, typer.Argument(help="Submission to grade")],
    json_output: JsonOption = False,
) -> None:
    """
    Automatically grade a submission.

    Questions that need a human grader are left ungraded and the submission
    stays open until they are scored with manual-grade.
    """
    try:
        report = _build_service().grader.grade_submission(submission_id)
    except GradingError as e:
        _fail(e)

    if json_output:
        _print_json(report.to_payload())
    else:
        _display_submission(report)


@app.command()
def manual_grade(
    response_id: Annotated[int, typer.Argument(help="Response to grade")],
    score: Annotated[str, typer.Argument(help="Points awarded")],
    feedback: Annotated[
        Optional[str],
        typer.Option("--feedback", "-f", help="Feedback for the student"),
    ] = None,
    grader: Annotated[
        Optional[int],
        typer.Option("--grader", "-g", help="Id of the human grader"),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """
    Record a manual score for one response.

    The submission is finalized once every answered question has a score.
    """
    try:
        report = _build_service().grader.manual_grade_question(
            response_id, score, feedback, grader
        )
    except GradingError as e:
        _fail(e)

    if json_output:
        _print_json(report.to_payload())
    else:
        _display_manual(report)


@app.command()
def final_grade(
    student_id: Annotated[int, typer.Argument(help="Student to grade")],
    course_id: Annotated[int, typer.Argument(help="Course to aggregate")],
    json_output: JsonOption = False,
) -> None:
    """
    Calculate and store a student's weighted final grade for a course.
    """
    try:
        report = _build_service().aggregator.calculate_final_grade(student_id, course_id)
    except GradingError as e:
        _fail(e)

    if json_output:
        _print_json(report.to_payload())
    else:
        _display_final(report)


@app.command()
def check_scale(
    course_id: Annotated[int, typer.Argument(help="Course whose grading scale to check")],
) -> None:
    """
    Show a course's grading scale and report inconsistent ranges.
    """
    try:
        store = SqlQuestionStore.from_settings()
        with store.transaction() as tx:
            thresholds = tx.get_grading_scale(course_id)
    except GradingError as e:
        _fail(e)

    if not thresholds:
        console.print(f"[red]Error:[/red] Course {course_id} has no grading scale")
        raise typer.Exit(1)

    table = Table(title=f"Grading Scale of Course {course_id}")
    table.add_column("Grade", style="cyan")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")

    for threshold in thresholds:
        table.add_row(threshold.grade, str(threshold.min_score), str(threshold.max_score))

    console.print(table)

    try:
        ScaleValidator().validate_or_raise(thresholds)
    except ScaleValidationError as e:
        console.print("\n[yellow]⚠ Validation issues found:[/yellow]")
        for issue in e.errors:
            console.print(f"  • {issue}")
        raise typer.Exit(1)

    console.print("\n[green]✓ Grading scale is valid[/green]")


@app.command()
def health() -> None:
    """
    Check if the grading system is operational.

    Verifies configuration and Question Store connectivity.
    """
    settings = get_settings()
    console.print("[bold]Autograder Health Check[/bold]\n")

    console.print("[dim]Checking configuration...[/dim]")
    console.print(f"  Database URL: {settings.database_url}")
    console.print(f"  Similarity Threshold: {settings.default_similarity_threshold}")
    console.print(f"  Partial Credit Band: {settings.partial_credit_band}")
    console.print(f"  Partial Credit Factor: {settings.partial_credit_factor}")

    console.print("\n[dim]Checking Question Store connectivity...[/dim]")
    if SqlQuestionStore.from_settings(settings).check_connection():
        console.print("[green]✓ Question Store is reachable[/green]")
    else:
        console.print("[red]✗ Question Store is not reachable[/red]")
        raise typer.Exit(1)

    console.print("\n[green]All systems operational[/green]")


def _build_service() -> GradingService:
    return GradingService.from_settings(get_settings())


def _fail(error: GradingError) -> NoReturn:
    """Report an error and exit with status 1."""
    if isinstance(error, StorageError):
        console.print("[red]Internal error:[/red] the Question Store is unavailable")
    else:
        console.print(f"[red]Error:[/red] {error.message}")
    raise typer.Exit(1)


def _print_json(payload: dict[str, Any]) -> None:
    console.print_json(data=payload)


def _display_submission(report: SubmissionGradingReport) -> None:
    """Display a submission's grading results in a formatted table."""
    table = Table(title=f"Submission {report.submission_id}")
    table.add_column("Question", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Feedback")
    table.add_column("Status")

    for result in report.grading_results:
        status = "👤 review" if result.needs_manual_grading else "✅"
        table.add_row(str(result.question_id), str(result.score), result.feedback, status)

    console.print(table)

    if report.needs_manual_grading:
        console.print(
            f"[yellow]⚠ {report.pending_review_count} question(s) need manual grading; "
            f"{report.total_score} / {report.max_points} graded automatically[/yellow]"
        )
    else:
        console.print(
            Panel(
                f"[green][bold]{report.total_score} / {report.max_points}[/bold][/green]",
                title="Final Score",
            )
        )


def _display_manual(report: ManualGradeReport) -> None:
    """Display the outcome of a manual grade."""
    console.print(f"[green]✓ Response {report.response_id} graded: {report.score}[/green]")
    if report.submission_finalized:
        console.print(
            f"[green]Submission {report.submission_id} finalized with "
            f"{report.total_score}[/green]"
        )
    else:
        console.print(f"[dim]Submission {report.submission_id} still has ungraded questions[/dim]")


def _display_final(report: FinalGradeReport) -> None:
    """Display a final grade with its category breakdown."""
    table = Table(title="Category Breakdown")
    table.add_column("Category", style="cyan")
    table.add_column("Weight", justify="right")
    table.add_column("Percentage", justify="right")
    table.add_column("Weighted", justify="right")

    for category in report.category_grades:
        table.add_row(
            category.name,
            f"{category.weight}",
            f"{category.percentage:.2f}%",
            f"{category.weighted_score:.2f}",
        )

    console.print(table)
    letter = report.letter_grade or "no letter grade"
    console.print(
        Panel(
            f"[bold]{report.final_grade:.2f}[/bold] ({letter})",
            title=f"Final Grade of Student {report.student_id}",
        )
    )


if __name__ == "__main__":
    app()

"""
Review Engine CLI

Terminal front end for the spaced-repetition review engine. State lives in
a local SQLite database (see Settings.state_db_path or --db).

Usage:
    review-engine grade --correct --confidence 0.8 --score 92 --time 2.5
    review-engine review USER ITEM --confidence 0.9 --score 95 --time-ms 2000
    review-engine batch events.json
    review-engine session USER --limit 20
    review-engine due USER
    review-engine forecast USER ITEM
    review-engine stats USER
    review-engine config
"""

from __future__ import annotations

import json
import random
import sys
from pathlib import Path
from typing import Annotated, NoReturn

import pydantic
import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Settings, get_settings
from src.review.engine import ReviewEngine
from src.review.errors import ValidationError
from src.review.memory_model import snap_to_study_hours
from src.review.models import ItemType, MistakeType, SortBy, utc_now
from src.review.priority_queue import PriorityQueue
from src.review.quality_scorer import QualityScorer
from src.review.state_store import StateStore

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="review-engine",
    help="Spaced-repetition review engine: score answers, schedule cards, build sessions",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

CATEGORY_STYLES = {
    "perfect": "bold green",
    "good": "green",
    "acceptable": "yellow",
    "poor": "red",
    "failed": "bold red",
}


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _engine(ctx: typer.Context, seed: int | None = None) -> ReviewEngine:
    settings = _settings(ctx)
    store = StateStore(ctx.obj["db_path"], settings.scheduler)
    rng = random.Random(seed) if seed is not None else None
    queue = PriorityQueue(settings.scheduler, rng=rng)
    return ReviewEngine(store, settings.scheduler, queue=queue)


def _fail(error: ValidationError) -> NoReturn:
    console.print(f"[red]Invalid input:[/] {error}")
    raise typer.Exit(1)


# =============================================================================
# Scoring
# =============================================================================


@app.command()
def grade(
    correct: Annotated[
        bool, typer.Option("--correct/--incorrect", help="Whether the answer was accepted")
    ] = True,
    confidence: Annotated[
        float, typer.Option("--confidence", "-c", help="Recognizer confidence (0-1)")
    ] = 1.0,
    score: Annotated[
        float, typer.Option("--score", "-s", help="Similarity score (0-100)")
    ] = 100.0,
    time: Annotated[
        float | None, typer.Option("--time", "-t", help="Response time in seconds")
    ] = None,
) -> None:
    """
    Grade a single answer without saving anything.

    Examples:
        review-engine grade --correct -c 0.9 -s 95 -t 2
        review-engine grade --incorrect -c 0.8
    """
    analysis = QualityScorer().get_detailed_analysis(correct, confidence, score, time)
    style = CATEGORY_STYLES[analysis.category.value]

    table = Table(title="Answer Grade")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")

    table.add_row("Quality", f"[{style}]{analysis.quality}[/]")
    table.add_row("Category", f"[{style}]{analysis.category.value}[/]")
    table.add_row("Reasoning", analysis.reasoning)
    table.add_row("Meaning", QualityScorer.describe_quality(analysis.quality))
    table.add_row("Confidence", analysis.confidence_level)
    table.add_row("Score", analysis.score_level)

    console.print(table)

    if analysis.recommendations:
        console.print(
            Panel(
                "\n".join(f"- {tip}" for tip in analysis.recommendations),
                title="Recommendations",
                border_style="blue",
            )
        )


# =============================================================================
# Reviews
# =============================================================================


@app.command()
def review(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner ID")],
    item_id: Annotated[str, typer.Argument(help="Item ID")],
    confidence: Annotated[
        float, typer.Option("--confidence", "-c", help="Recognizer confidence (0-1)")
    ] = 1.0,
    score: Annotated[
        float, typer.Option("--score", "-s", help="Similarity score (0-100)")
    ] = 100.0,
    time_ms: Annotated[
        float | None, typer.Option("--time-ms", "-t", help="Response time in milliseconds")
    ] = None,
    correct: Annotated[
        bool | None,
        typer.Option(
            "--correct/--incorrect",
            help="Explicit verdict (derived from the score when omitted)",
        ),
    ] = None,
    answer: Annotated[str, typer.Option("--answer", help="Learner's answer text")] = "",
    reference: Annotated[str, typer.Option("--reference", help="Reference answer text")] = "",
    mistake_type: Annotated[
        MistakeType, typer.Option("--mistake-type", "-m", help="Mistake type if wrong")
    ] = MistakeType.STRUCTURE,
    item_type: Annotated[
        ItemType, typer.Option("--item-type", help="Item type for a new card")
    ] = ItemType.SENTENCE,
) -> None:
    """Record one review and show the new schedule."""
    engine = _engine(ctx)
    try:
        outcome = engine.submit_review(
            {
                "user_id": user_id,
                "item_id": item_id,
                "item_type": item_type,
                "recognizer_confidence": confidence,
                "similarity_score": score,
                "response_time_ms": time_ms,
                "is_correct": correct,
                "user_answer_text": answer,
                "reference_answer_text": reference,
                "mistake_type": mistake_type,
            }
        )
    except ValidationError as e:
        _fail(e)

    card = outcome.card
    style = CATEGORY_STYLES[outcome.quality.category.value]

    table = Table(title=f"Review: {user_id} / {item_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Correct", "Yes" if outcome.is_correct else "No")
    table.add_row("Quality", f"[{style}]{outcome.quality.quality} ({outcome.quality.category.value})[/]")
    table.add_row("Reasoning", outcome.quality.reasoning)
    table.add_row(
        "State",
        f"{outcome.schedule.previous_state.value} -> {card.learning_state.value}",
    )
    table.add_row("Interval", f"{card.interval:g} days")
    table.add_row("Ease", f"{card.ease_factor:.2f}")
    table.add_row("Strength", f"{card.memory_strength:.2f}")
    table.add_row("Next review", card.next_review.strftime("%Y-%m-%d %H:%M UTC"))
    if outcome.mistake is not None:
        table.add_row("Mistake weight", f"{outcome.mistake.weight:.2f}")

    console.print(table)

    if outcome.chronic_difficulty:
        console.print(f"[yellow]Chronic difficulty: {card.lapses} lapses on this card[/]")


@app.command()
def batch(
    ctx: typer.Context,
    events_file: Annotated[Path, typer.Argument(help="JSON file with a list of review events")],
) -> None:
    """Submit a batch of 1-100 review events from a JSON file."""
    try:
        events = json.loads(events_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read {events_file}:[/] {e}")
        raise typer.Exit(1)

    if not isinstance(events, list):
        console.print("[red]Events file must contain a JSON list[/]")
        raise typer.Exit(1)

    engine = _engine(ctx)
    try:
        result = engine.submit_batch(events)
    except ValidationError as e:
        _fail(e)

    console.print(f"[green]{result.processed} processed[/], [red]{result.failed} failed[/]")

    if result.failures:
        table = Table(title="Rejected events")
        table.add_column("#", style="dim", width=4)
        table.add_column("Item", style="cyan")
        table.add_column("Field", style="yellow")
        table.add_column("Message")
        for failure in result.failures:
            table.add_row(str(failure.index), failure.item_id or "-", failure.field, failure.message)
        console.print(table)


@app.command()
def suspend(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner ID")],
    item_id: Annotated[str, typer.Argument(help="Item ID")],
    resume: Annotated[bool, typer.Option("--resume", help="Resume instead of suspend")] = False,
) -> None:
    """Suspend a card (or resume it with --resume)."""
    try:
        _engine(ctx).set_suspended(user_id, item_id, suspended=not resume)
    except ValidationError as e:
        _fail(e)
    console.print(f"[green]{item_id} {'resumed' if resume else 'suspended'}[/]")


# =============================================================================
# Queries
# =============================================================================


@app.command()
def session(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner ID")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-n", help="Session size (1-100)")
    ] = None,
    ratio: Annotated[
        float | None, typer.Option("--ratio", "-r", help="Incorrect-priority share (0-1)")
    ] = None,
    include_new: Annotated[
        bool, typer.Option("--new/--no-new", help="Include never-reviewed cards")
    ] = True,
    sort_by: Annotated[
        SortBy, typer.Option("--sort-by", help="Ordering of regular cards")
    ] = SortBy.PRIORITY,
    seed: Annotated[
        int | None, typer.Option("--seed", help="Shuffle ties with this seed")
    ] = None,
) -> None:
    """
    Build the next review session.

    Examples:
        review-engine session alice
        review-engine session alice -n 30 -r 0.5 --sort-by due_date
    """
    settings = _settings(ctx)
    engine = _engine(ctx, seed)
    try:
        built = engine.build_session(
            {
                "user_id": user_id,
                "limit": limit if limit is not None else settings.default_session_size,
                "incorrect_ratio": ratio if ratio is not None else settings.default_incorrect_ratio,
                "include_new": include_new,
                "sort_by": sort_by,
            }
        )
    except ValidationError as e:
        _fail(e)

    table = Table(title=f"Session for {user_id} ({built.session_type.value}, {built.size}/{built.target_size})")
    table.add_column("#", style="dim", width=4)
    table.add_column("Item", style="cyan")
    table.add_column("Source", style="yellow")

    position = 1
    for item_id in built.incorrect_priority:
        table.add_row(str(position), item_id, "mistake")
        position += 1
    for item_id in built.regular:
        table.add_row(str(position), item_id, "due")
        position += 1

    console.print(table)
    for warning in built.warnings:
        console.print(f"[yellow]{warning.message}[/]")


@app.command()
def due(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner ID")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum cards shown")] = 20,
    include_new: Annotated[
        bool, typer.Option("--new/--no-new", help="Include never-reviewed cards")
    ] = True,
    sort_by: Annotated[
        SortBy, typer.Option("--sort-by", help="Ordering")
    ] = SortBy.PRIORITY,
) -> None:
    """List cards that are due now."""
    engine = _engine(ctx)
    now = utc_now()
    cards = engine.due_cards(user_id, now, include_new=include_new, sort_by=sort_by, limit=limit)

    if not cards:
        console.print("[green]Nothing due.[/]")
        return

    table = Table(title=f"Due cards for {user_id} ({len(cards)})")
    table.add_column("Item", style="cyan")
    table.add_column("State")
    table.add_column("Priority", justify="right")
    table.add_column("Strength", justify="right")
    table.add_column("Lapses", justify="right")
    table.add_column("Due since")

    for card in cards:
        table.add_row(
            card.item_id,
            card.learning_state.value,
            f"{engine.queue.priority_score(card, now):.2f}",
            f"{engine.memory.current_strength(card, now):.2f}",
            str(card.lapses),
            card.next_review.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def forecast(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner ID")],
    item_id: Annotated[str, typer.Argument(help="Item ID")],
) -> None:
    """Show the retention forecast for one card."""
    engine = _engine(ctx)
    try:
        prediction = engine.forecast(user_id, item_id)
    except ValidationError as e:
        _fail(e)

    table = Table(title=f"Retention forecast: {user_id} / {item_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Current strength", f"{prediction.current_strength:.1%}")
    table.add_row("In 24 hours", f"{prediction.strength_in_24h:.1%}")
    table.add_row("In 7 days", f"{prediction.strength_in_7d:.1%}")
    table.add_row("Optimal review", prediction.optimal_review_time.strftime("%Y-%m-%d %H:%M UTC"))
    table.add_row(
        "Suggested study time",
        snap_to_study_hours(prediction.optimal_review_time).strftime("%Y-%m-%d %H:%M UTC"),
    )
    table.add_row("Time to forget", f"{prediction.time_to_forget_hours:.1f} h")
    table.add_row("Confidence", f"{prediction.confidence_level:.0%}")

    console.print(table)


@app.command()
def history(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner ID")],
    item_id: Annotated[str, typer.Argument(help="Item ID")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Reviews shown")] = 10,
) -> None:
    """Show logged reviews of one card, most recent first."""
    engine = _engine(ctx)
    entries = engine.store.get_review_history(user_id, item_id, limit)

    if not entries:
        console.print("[yellow]No reviews logged.[/]")
        return

    table = Table(title=f"History: {user_id} / {item_id}")
    table.add_column("Reviewed at")
    table.add_column("Quality", justify="right")
    table.add_column("Response", justify="right")
    for entry in entries:
        table.add_row(
            entry.reviewed_at.strftime("%Y-%m-%d %H:%M"),
            str(entry.quality),
            f"{entry.response_ms:.0f} ms",
        )
    console.print(table)


@app.command()
def stats(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner ID")],
) -> None:
    """Show card, review and mistake statistics for a learner."""
    engine = _engine(ctx)
    counts = engine.store.get_stats(user_id)
    mistakes = engine.mistake_statistics(user_id)

    table = Table(title=f"Statistics for {user_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Cards", str(counts["total_cards"]))
    table.add_row("Due now", str(counts["due_cards"]))
    table.add_row("Reviews", str(counts["total_reviews"]))
    table.add_row("Average quality", f"{counts['average_quality']:.2f}")
    table.add_row("Mistake records", str(mistakes.total_records))
    table.add_row("Recent mistake records", str(mistakes.recent_records))
    table.add_row("Most common mistake", mistakes.most_common_type)

    console.print(table)


@app.command()
def config(ctx: typer.Context) -> None:
    """Show the active scheduler configuration."""
    settings = _settings(ctx)
    console.print_json(json.dumps(settings.scheduler.model_dump(), indent=2, default=str))


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    ctx: typer.Context,
    db: Annotated[
        Path | None, typer.Option("--db", help="SQLite state database path")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Debug logging")
    ] = False,
) -> None:
    """
    Spaced-repetition review engine.

    \b
    Quick Start:
      review-engine review alice s1 -c 0.9 -s 95 -t 2000
      review-engine session alice
      review-engine forecast alice s1
    """
    try:
        settings = get_settings()
    except pydantic.ValidationError as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        raise typer.Exit(2)

    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)

    ctx.obj = {"settings": settings, "db_path": db or settings.state_db_path}


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()

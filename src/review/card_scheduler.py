"""
Card Scheduler - per-card state machine over SM-2 intervals and learning steps.

States:
- NEW: never reviewed
- LEARNING: walking the learning steps (minutes)
- REVIEW: graduated, scheduled in days by ease factor and interval
- RELEARNING: lapsed, walking the (shorter) relearning steps

Every update also refreshes the continuous memory state through the
MemoryModel. The next review is the earlier of the discrete due date and
the memory model's optimal review time, never before now + 1 minute.

The suspended flag belongs to the caller; the scheduler never sets it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from loguru import logger

from src.review.config import SchedulerConfig
from src.review.errors import ValidationError
from src.review.memory_model import MemoryModel
from src.review.models import Card, LearningState, clamp, ensure_utc, utc_now

MIN_NEXT_REVIEW_DELAY = timedelta(minutes=1)


@dataclass(frozen=True)
class ScheduleResult:
    """Updated card plus the scheduling facts behind it."""

    card: Card
    quality: int
    previous_state: LearningState
    discrete_due: datetime
    memory_due: datetime
    chronic_difficulty: bool = False

    @property
    def state_changed(self) -> bool:
        return self.card.learning_state != self.previous_state

    @property
    def passed(self) -> bool:
        return self.card.correct_streak > 0


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def validate_quality(quality: object) -> int:
    """Quality must be an integer grade 0-5."""
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise ValidationError("quality", "must be an integer between 0 and 5")
    if not 0 <= quality <= 5:
        raise ValidationError("quality", f"must be between 0 and 5, got {quality}")
    return quality


class CardScheduler:
    """
    Applies one review event to a card.

    Pure with respect to its inputs: the card passed in is never mutated;
    a new Card is returned inside a ScheduleResult.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        memory_model: MemoryModel | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            config: Scheduler constants (defaults if None)
            memory_model: Forgetting-curve model (built from config if None)
        """
        self.config = config or SchedulerConfig()
        self.memory = memory_model or MemoryModel(self.config)

    def update(
        self,
        card: Card,
        quality: int,
        now: datetime | None = None,
        response_time_ms: float = 0,
    ) -> ScheduleResult:
        """
        Schedule a card after a review.

        Args:
            card: Card before the review
            quality: Quality grade 0-5 from the QualityScorer
            now: Review instant (defaults to the current UTC time)
            response_time_ms: Answer latency in milliseconds

        Returns:
            ScheduleResult with the updated card

        Raises:
            ValidationError: quality outside 0-5, or card without identity
        """
        quality = validate_quality(quality)
        if not card.user_id or not card.item_id:
            raise ValidationError(
                "user_id" if not card.user_id else "item_id",
                "is required and must be a non-empty string",
            )

        now = ensure_utc(now or utc_now())
        response_time_ms = max(0.0, response_time_ms or 0.0)
        previous_state = card.learning_state
        passed = quality >= self.config.passing_grade

        updated, discrete_due = self._transition(card, quality, passed, now)
        updated = self._record_response(updated, quality, passed, response_time_ms)
        updated = self.memory.update_after_review(updated, quality, response_time_ms, now)

        memory_due = self.memory.optimal_review_time(updated, now=now)
        next_review = min(discrete_due, memory_due)
        if next_review <= now:
            logger.debug(
                f"Next review for {card.item_id} clamped from {next_review.isoformat()} to now + 1 min"
            )
            next_review = now + MIN_NEXT_REVIEW_DELAY
        updated = replace(updated, next_review=next_review)

        chronic = updated.lapses >= self.config.chronic_lapse_threshold
        if chronic:
            logger.warning(
                f"Card {card.user_id}/{card.item_id} has {updated.lapses} lapses (chronic difficulty)"
            )

        logger.debug(
            f"Scheduled {card.item_id}: {previous_state.value} -> {updated.learning_state.value}, "
            f"quality={quality}, interval={updated.interval:g}d, ease={updated.ease_factor:.2f}, "
            f"next_review={next_review.isoformat()}"
        )

        return ScheduleResult(
            card=updated,
            quality=quality,
            previous_state=previous_state,
            discrete_due=discrete_due,
            memory_due=memory_due,
            chronic_difficulty=chronic,
        )

    # =========================================================================
    # Discrete transitions
    # =========================================================================

    def _transition(
        self, card: Card, quality: int, passed: bool, now: datetime
    ) -> tuple[Card, datetime]:
        state = card.learning_state

        if state == LearningState.NEW:
            return self._enter_learning(card, quality, passed, now)

        if state == LearningState.LEARNING:
            if not passed:
                return self._lapse(card, now)
            return self._advance_steps(card, quality, self.config.learning_steps, now)

        if state == LearningState.RELEARNING:
            if not passed:
                # Restart the relearning steps; the lapse was already counted
                return self._at_step(card, LearningState.RELEARNING, 0, now)
            return self._advance_steps(card, quality, self.config.relearning_steps, now)

        if not passed:
            return self._lapse(card, now)
        return self._review_pass(card, quality, now)

    def _enter_learning(
        self, card: Card, quality: int, passed: bool, now: datetime
    ) -> tuple[Card, datetime]:
        if passed and len(self.config.learning_steps) == 1:
            return self._graduate(card, quality, now)
        return self._at_step(card, LearningState.LEARNING, 0, now)

    def _advance_steps(
        self,
        card: Card,
        quality: int,
        steps: tuple[float, ...],
        now: datetime,
    ) -> tuple[Card, datetime]:
        step = min(card.learning_step, len(steps) - 1)
        if step >= len(steps) - 1:
            if card.learning_state == LearningState.RELEARNING:
                return self._return_to_review(card, now)
            return self._graduate(card, quality, now)
        return self._at_step(card, card.learning_state, step + 1, now)

    def _at_step(
        self, card: Card, state: LearningState, step: int, now: datetime
    ) -> tuple[Card, datetime]:
        steps = (
            self.config.relearning_steps
            if state == LearningState.RELEARNING
            else self.config.learning_steps
        )
        step = min(step, len(steps) - 1)
        updated = replace(card, learning_state=state, learning_step=step)
        return updated, now + timedelta(minutes=steps[step])

    def _graduate(self, card: Card, quality: int, now: datetime) -> tuple[Card, datetime]:
        cfg = self.config
        interval = cfg.easy_interval if quality >= cfg.easy_grade else cfg.graduating_interval
        interval = clamp(interval, cfg.min_interval, cfg.max_interval)
        updated = replace(
            card,
            learning_state=LearningState.REVIEW,
            learning_step=0,
            graduated=True,
            interval=float(interval),
            repetition_count=card.repetition_count + 1,
        )
        logger.debug(f"Card {card.item_id} graduated with interval {interval}d")
        return updated, now + timedelta(days=interval)

    def _return_to_review(self, card: Card, now: datetime) -> tuple[Card, datetime]:
        cfg = self.config
        interval = clamp(card.interval, cfg.min_interval, cfg.max_interval)
        updated = replace(
            card,
            learning_state=LearningState.REVIEW,
            learning_step=0,
            graduated=True,
            interval=float(interval),
            repetition_count=card.repetition_count + 1,
        )
        return updated, now + timedelta(days=interval)

    def _lapse(self, card: Card, now: datetime) -> tuple[Card, datetime]:
        cfg = self.config
        ease = clamp(
            card.ease_factor - cfg.sm2_ease_penalty,
            cfg.sm2_min_ease_factor,
            cfg.sm2_max_ease_factor,
        )
        lapsed = replace(
            card,
            graduated=False,
            lapses=card.lapses + 1,
            ease_factor=ease,
            interval=float(cfg.min_interval),
            repetition_count=0,
        )
        return self._at_step(lapsed, LearningState.RELEARNING, 0, now)

    def _review_pass(self, card: Card, quality: int, now: datetime) -> tuple[Card, datetime]:
        cfg = self.config
        # New interval grows by the ease the card had going into this review
        interval = round_half_up(card.interval * card.ease_factor * cfg.interval_modifier)
        interval = int(clamp(interval, cfg.min_interval, cfg.max_interval))

        if quality >= cfg.easy_grade:
            ease = card.ease_factor + cfg.sm2_ease_bonus
        else:
            ease = card.ease_factor - cfg.sm2_hard_penalty
        ease = clamp(ease, cfg.sm2_min_ease_factor, cfg.sm2_max_ease_factor)

        updated = replace(
            card,
            ease_factor=ease,
            interval=float(interval),
            repetition_count=card.repetition_count + 1,
            graduated=True,
        )
        return updated, now + timedelta(days=interval)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _record_response(
        self, card: Card, quality: int, passed: bool, response_time_ms: float
    ) -> Card:
        average = card.average_response_time
        if response_time_ms > 0:
            timed_reviews = card.total_reviews + 1
            average = (average * card.total_reviews + response_time_ms) / timed_reviews

        return replace(
            card,
            correct_streak=card.correct_streak + 1 if passed else 0,
            average_response_time=average,
            last_quality=quality,
        )

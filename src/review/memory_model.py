"""
Memory Model - exponential forgetting curve per card.

Retention after t hours without review:

    R(t) = exp(-t / S_adj) * strength

where the adjusted stability S_adj scales the card's stability by its
difficulty, strength, review count and success rate (minimum 1 hour).

Inputs:
- Card.memory_strength  current retrievability ceiling (0-1)
- Card.stability_factor decay stability
- Card.difficulty_factor subjective difficulty
- Card.total_reviews, Card.success_rate, Card.last_reviewed

Pure state transitions: no I/O, no randomness, never raises.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from src.review.config import SchedulerConfig
from src.review.models import Card, clamp, ensure_utc, utc_now

MIN_ADJUSTED_STABILITY_HOURS = 1.0
REVIEW_COUNT_BONUS_PER_REVIEW = 0.05
REVIEW_COUNT_BONUS_CAP = 0.5

STRENGTH_AFTER_REVIEW_BOUNDS = (0.1, 1.0)
STABILITY_AFTER_REVIEW_BOUNDS = (1.0, 365.0)
DIFFICULTY_AFTER_REVIEW_BOUNDS = (0.1, 5.0)
STABILITY_GROWTH_PER_GRADE = 0.1
STABILITY_DECAY_ON_FAILURE = 0.8
NEUTRAL_STABILITY_GAIN = 1.5

# Morning and evening study hours (UTC)
DEFAULT_STUDY_HOURS = (9, 10, 19, 20)


@dataclass(frozen=True)
class RetentionForecast:
    """Forward-looking view of a card's memory."""

    current_strength: float
    strength_in_24h: float
    strength_in_7d: float
    optimal_review_time: datetime
    time_to_forget_hours: float
    confidence_level: float


def time_weight(response_time_ms: float) -> float:
    """Response-time bucket: fast answers weigh 1.0, slow ones 0.2."""
    if response_time_ms <= 2000:
        return 1.0
    if response_time_ms <= 5000:
        return 0.8
    if response_time_ms <= 10000:
        return 0.5
    return 0.2


def snap_to_study_hours(
    when: datetime,
    preferred_hours: Sequence[int] = DEFAULT_STUDY_HOURS,
    now: datetime | None = None,
) -> datetime:
    """
    Move a due time to the nearest preferred study hour.

    A time already inside a preferred hour is returned unchanged. Otherwise
    the time moves to the top of the nearest preferred hour on the same day
    (earlier hours win ties), and to the next day if that has already passed.
    Advisory only: the scheduler's next_review is never changed by this.
    """
    when = ensure_utc(when)
    if not preferred_hours or when.hour in preferred_hours:
        return when

    nearest = min(preferred_hours, key=lambda h: (abs(h - when.hour), h))
    snapped = when.replace(hour=nearest, minute=0, second=0, microsecond=0)
    if snapped <= ensure_utc(now or utc_now()):
        snapped += timedelta(days=1)
    return snapped


def _hours_between(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - start).total_seconds() / 3600


class MemoryModel:
    """
    Forgetting-curve model over a card's continuous memory state.

    The SchedulerConfig supplies the stability multiplier, difficulty and
    strength weights, consistency bonus and the retention thresholds.
    """

    def __init__(self, config: SchedulerConfig | None = None):
        self.config = config or SchedulerConfig()

    # =========================================================================
    # Retention
    # =========================================================================

    def adjusted_stability(self, card: Card) -> float:
        """Stability in hours after difficulty, strength and history adjustments."""
        cfg = self.config
        stability = card.stability_factor * cfg.initial_stability
        stability *= 1 - card.difficulty_factor * cfg.difficulty_weight
        stability *= 1 + card.memory_strength * cfg.strength_weight
        stability *= 1 + min(REVIEW_COUNT_BONUS_CAP, card.total_reviews * REVIEW_COUNT_BONUS_PER_REVIEW)
        stability *= 1 + card.success_rate * cfg.consistency_bonus
        return max(stability, MIN_ADJUSTED_STABILITY_HOURS)

    def retention(self, card: Card, hours_elapsed: float) -> float:
        """R(t) for t hours after the last review, clamped to 0-1."""
        if card.memory_strength <= 0:
            return 0.0
        stability = self.adjusted_stability(card)
        hours_elapsed = max(0.0, hours_elapsed)
        return clamp(math.exp(-hours_elapsed / stability) * card.memory_strength, 0.0, 1.0)

    def hours_since_review(self, card: Card, at: datetime) -> float:
        if card.last_reviewed is None:
            return 0.0
        return _hours_between(card.last_reviewed, at)

    def current_strength(self, card: Card, now: datetime | None = None) -> float:
        now = ensure_utc(now or utc_now())
        return self.retention(card, self.hours_since_review(card, now))

    def predict_strength(self, card: Card, future: datetime) -> float:
        """Retention at an arbitrary instant (e.g. 24 h or 7 days ahead)."""
        return self.retention(card, self.hours_since_review(card, future))

    def optimal_review_time(
        self,
        card: Card,
        retention_threshold: float | None = None,
        now: datetime | None = None,
    ) -> datetime:
        """
        When retention decays to the threshold.

        Solves exp(-t / S_adj) * strength = threshold for t. Returns now if the
        card is already at or below the threshold.
        """
        now = ensure_utc(now or utc_now())
        threshold = retention_threshold or self.config.retention_threshold
        if card.memory_strength <= 0:
            return now

        ratio = threshold / card.memory_strength
        if ratio >= 1:
            return now

        hours = -self.adjusted_stability(card) * math.log(ratio)
        anchor = card.last_reviewed or now
        return max(now, anchor + timedelta(hours=hours))

    def suggested_study_time(
        self,
        card: Card,
        preferred_hours: Sequence[int] = DEFAULT_STUDY_HOURS,
        now: datetime | None = None,
    ) -> datetime:
        """Card's next_review moved to the nearest preferred study hour (advisory)."""
        return snap_to_study_hours(card.next_review, preferred_hours, now)

    def time_to_forget(
        self,
        card: Card,
        forget_threshold: float | None = None,
        now: datetime | None = None,
    ) -> float:
        """Hours left until retention drops below the forget threshold (floor 0)."""
        now = ensure_utc(now or utc_now())
        threshold = forget_threshold or self.config.forget_threshold
        if card.memory_strength <= 0:
            return 0.0

        ratio = threshold / card.memory_strength
        if ratio >= 1:
            return 0.0

        hours_to_forget = -self.adjusted_stability(card) * math.log(ratio)
        return max(0.0, hours_to_forget - self.hours_since_review(card, now))

    # =========================================================================
    # State update
    # =========================================================================

    def update_after_review(
        self,
        card: Card,
        quality: int,
        response_time_ms: float = 0,
        now: datetime | None = None,
    ) -> Card:
        """
        Refresh the memory state after a review.

        Args:
            card: Card before the review
            quality: Quality grade, clamped to 0-5
            response_time_ms: Answer latency in milliseconds
            now: Review instant

        Returns:
            New Card; the input is not modified
        """
        cfg = self.config
        now = ensure_utc(now or utc_now())
        quality = int(clamp(quality, 0, 5))
        passed = quality >= cfg.passing_grade

        strength = clamp(
            card.memory_strength + (quality - 2.5) * 0.1 + 0.1,
            *STRENGTH_AFTER_REVIEW_BOUNDS,
        )

        if passed:
            growth = STABILITY_GROWTH_PER_GRADE * cfg.stability_gain / NEUTRAL_STABILITY_GAIN
            stability = card.stability_factor * (1 + quality * growth)
        else:
            stability = card.stability_factor * STABILITY_DECAY_ON_FAILURE
        stability = clamp(stability, *STABILITY_AFTER_REVIEW_BOUNDS)

        difficulty = clamp(
            card.difficulty_factor * 0.8 + (1 - time_weight(max(0.0, response_time_ms))) * 0.2,
            *DIFFICULTY_AFTER_REVIEW_BOUNDS,
        )

        alpha = cfg.success_rate_alpha
        success_rate = card.success_rate * (1 - alpha) + (1.0 if passed else 0.0) * alpha

        return replace(
            card,
            memory_strength=strength,
            stability_factor=stability,
            difficulty_factor=difficulty,
            success_rate=clamp(success_rate, 0.0, 1.0),
            total_reviews=card.total_reviews + 1,
            last_reviewed=now,
        )

    # =========================================================================
    # Mastery and forecasting
    # =========================================================================

    def is_mastered(self, card: Card, now: datetime | None = None) -> bool:
        cfg = self.config
        return (
            self.current_strength(card, now) >= cfg.mastery_threshold
            and card.total_reviews >= cfg.mastery_min_reviews
            and card.success_rate >= cfg.mastery_min_success_rate
        )

    def prediction_confidence(self, card: Card) -> float:
        """How much to trust the forecast: more reviews and a steady success rate help."""
        confidence = 0.7
        confidence += min(0.2, card.total_reviews * 0.02)
        confidence += (1 - abs(card.success_rate - 0.7) * 2) * 0.1
        return clamp(confidence, 0.3, 1.0)

    def forecast(self, card: Card, now: datetime | None = None) -> RetentionForecast:
        now = ensure_utc(now or utc_now())
        return RetentionForecast(
            current_strength=self.current_strength(card, now),
            strength_in_24h=self.predict_strength(card, now + timedelta(hours=24)),
            strength_in_7d=self.predict_strength(card, now + timedelta(days=7)),
            optimal_review_time=self.optimal_review_time(card, now=now),
            time_to_forget_hours=self.time_to_forget(card, now=now),
            confidence_level=self.prediction_confidence(card),
        )

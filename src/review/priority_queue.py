"""
Priority Queue - review session composer.

Builds a bounded session for one learner:
1. Recent mistake records (inside the recency window) are weighted by
   frequency, recency and mistake type; the heaviest fill the
   "incorrect-priority" slice, up to floor(total_size * incorrect_ratio).
2. Regular due cards fill the rest, ordered by sort rule.

Sessions are never padded with cards that are not due. Suspended and
mastered cards are never selected, and a mistake record only qualifies
while the learner holds an active card for its item.

Ties in the regular ordering break on item_id. When a random.Random is
injected, ties are shuffled by it instead (deterministic only if seeded).
"""

from __future__ import annotations

import math
import random
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from loguru import logger

from src.review.config import SchedulerConfig
from src.review.errors import InsufficientDataWarning, ValidationError
from src.review.memory_model import MemoryModel
from src.review.models import (
    Card,
    LearningState,
    MistakeEntry,
    MistakeRecord,
    MistakeType,
    ReviewSession,
    SessionType,
    SortBy,
    clamp,
    ensure_utc,
    utc_now,
)

INCORRECT_FOCUS_SHARE = 0.5


# =============================================================================
# Mistake records
# =============================================================================


def mistake_weight(
    record: MistakeRecord,
    now: datetime | None = None,
    config: SchedulerConfig | None = None,
) -> float:
    """
    Priority weight of a mistake record.

        recency = max(0.1, 1 - days_since_last_mistake * 0.2)
        weight  = incorrect_count * recency
                + 0.5 per recent mistake inside the window
                + 0.3 if any grammar mistake
                + 0.2 if any vocabulary mistake
        weight  = min(weight, 10)

    The formula is a heuristic kept exactly as sessions depend on its shape.
    """
    cfg = config or SchedulerConfig()
    now = ensure_utc(now or utc_now())
    cutoff = now - timedelta(days=cfg.mistake_window_days)

    days_since = 0
    if record.last_incorrect_date is not None:
        days_since = max(0, (now - record.last_incorrect_date).days)
    recency = max(0.1, 1.0 - days_since * 0.2)

    weight = record.incorrect_count * recency
    weight += sum(1 for m in record.recent_mistakes if m.timestamp >= cutoff) * 0.5

    types = {m.mistake_type for m in record.recent_mistakes}
    if MistakeType.GRAMMAR in types:
        weight += 0.3
    if MistakeType.VOCABULARY in types:
        weight += 0.2

    return min(weight, cfg.mistake_max_weight)


def append_mistake(
    record: MistakeRecord,
    mistake_type: MistakeType = MistakeType.STRUCTURE,
    user_answer: str = "",
    correct_answer: str = "",
    now: datetime | None = None,
    config: SchedulerConfig | None = None,
) -> MistakeRecord:
    """
    Record another wrong answer.

    Returns a new record with the count bumped, the ring extended (oldest
    entries dropped past capacity) and the weight recomputed. The input
    record and its ring are left untouched.
    """
    cfg = config or SchedulerConfig()
    now = ensure_utc(now or utc_now())

    entry = MistakeEntry(
        timestamp=now,
        mistake_type=mistake_type,
        user_answer=user_answer,
        correct_answer=correct_answer,
    )
    updated = replace(
        record,
        incorrect_count=record.incorrect_count + 1,
        last_incorrect_date=now,
        recent_mistakes=[*record.recent_mistakes, entry][-cfg.recent_mistake_capacity:],
    )
    updated.weight = mistake_weight(updated, now, cfg)
    return updated


@dataclass(frozen=True)
class MistakeStatistics:
    """Summary of a learner's mistake log."""

    total_records: int
    recent_records: int
    most_common_type: str
    type_counts: dict[str, int] = field(default_factory=dict)


def mistake_statistics(
    records: Iterable[MistakeRecord],
    now: datetime | None = None,
    config: SchedulerConfig | None = None,
) -> MistakeStatistics:
    """Counts per mistake type, plus how many records fall inside the window."""
    cfg = config or SchedulerConfig()
    now = ensure_utc(now or utc_now())
    cutoff = now - timedelta(days=cfg.mistake_window_days)
    records = list(records)

    counts = Counter(m.mistake_type.value for r in records for m in r.recent_mistakes)
    recent = sum(
        1 for r in records if r.last_incorrect_date is not None and r.last_incorrect_date >= cutoff
    )
    most_common = counts.most_common(1)[0][0] if counts else "none"

    return MistakeStatistics(
        total_records=len(records),
        recent_records=recent,
        most_common_type=most_common,
        type_counts=dict(counts),
    )


# =============================================================================
# Session composer
# =============================================================================


class PriorityQueue:
    """
    Composes review sessions from a learner's cards and mistake log.

    Example:
        queue = PriorityQueue(config, MemoryModel(config))
        session = queue.build_session("user-1", cards, mistakes, total_size=20)
        for item_id in session.item_ids:
            ...
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        memory_model: MemoryModel | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the composer.

        Args:
            config: Scheduler constants (defaults if None)
            memory_model: Used for current strength and mastery checks
            rng: Tie-shuffling source; ties break on item_id when None
        """
        self.config = config or SchedulerConfig()
        self.memory = memory_model or MemoryModel(self.config)
        self.rng = rng

    def recent_mistakes(
        self,
        mistakes: Iterable[MistakeRecord],
        now: datetime | None = None,
    ) -> list[MistakeRecord]:
        """Records with a mistake inside the recency window, weights recomputed."""
        now = ensure_utc(now or utc_now())
        cutoff = now - timedelta(days=self.config.mistake_window_days)
        recent = []
        for record in mistakes:
            if record.last_incorrect_date is None or record.last_incorrect_date < cutoff:
                continue
            weight = mistake_weight(record, now, self.config)
            recent.append(replace(record, recent_mistakes=list(record.recent_mistakes), weight=weight))
        return recent

    def priority_score(self, card: Card, now: datetime | None = None) -> float:
        """
        Urgency of a due card; higher is more urgent.

            (1 - current_strength) * 10 + min(10, overdue_days * 2)
            + difficulty_factor + lapses * 0.5
        """
        now = ensure_utc(now or utc_now())
        overdue_days = max(0.0, (now - card.next_review).total_seconds() / 86400)
        return (
            (1 - self.memory.current_strength(card, now)) * 10
            + min(10.0, overdue_days * 2)
            + card.difficulty_factor
            + card.lapses * 0.5
        )

    def due_cards(
        self,
        cards: Iterable[Card],
        now: datetime | None = None,
        include_new: bool = True,
        sort_by: SortBy = SortBy.PRIORITY,
        exclude: Iterable[str] = (),
    ) -> list[Card]:
        """
        Due, unsuspended, unmastered cards in session order.

        Args:
            cards: Learner's cards
            now: Reference instant
            include_new: Whether never-reviewed cards qualify
            sort_by: priority (score desc), due_date (earliest first),
                difficulty (difficulty factor desc)
            exclude: item_ids already selected elsewhere
        """
        now = ensure_utc(now or utc_now())
        excluded = set(exclude)
        candidates = [
            card
            for card in cards
            if card.item_id not in excluded
            and card.is_due(now)
            and (include_new or card.learning_state != LearningState.NEW)
            and not self.memory.is_mastered(card, now)
        ]
        return self._order(candidates, SortBy(sort_by), now)

    def build_session(
        self,
        user_id: str,
        cards: Sequence[Card],
        mistakes: Iterable[MistakeRecord] = (),
        total_size: int = 20,
        incorrect_ratio: float = 0.7,
        now: datetime | None = None,
        include_new: bool = True,
        sort_by: SortBy = SortBy.PRIORITY,
    ) -> ReviewSession:
        """
        Build a review session for one learner.

        Args:
            user_id: Learner the session is for
            cards: Learner's cards
            mistakes: Learner's mistake records
            total_size: Target session size (>= 1)
            incorrect_ratio: Share reserved for mistake review, clamped to 0-1
            now: Reference instant
            include_new: Whether NEW cards may fill the regular slice
            sort_by: Ordering rule for the regular slice

        Returns:
            ReviewSession; smaller than total_size when candidates run out

        Raises:
            ValidationError: empty user_id or total_size below 1
        """
        if not user_id or not user_id.strip():
            raise ValidationError("user_id", "is required and must be a non-empty string")
        if isinstance(total_size, bool) or not isinstance(total_size, int) or total_size < 1:
            raise ValidationError("total_size", "must be an integer of at least 1")

        now = ensure_utc(now or utc_now())
        incorrect_ratio = clamp(incorrect_ratio, 0.0, 1.0)
        cards = [card for card in cards if card.user_id == user_id]

        active = {card.item_id for card in cards if not card.suspended}
        max_incorrect = math.floor(total_size * incorrect_ratio)

        qualifying = [
            record
            for record in self.recent_mistakes(mistakes, now)
            if record.user_id == user_id
            and record.sentence_id in active
            and record.weight > self.config.mistake_min_weight
        ]
        qualifying.sort(key=lambda r: (-r.weight, r.sentence_id))
        incorrect_ids = [record.sentence_id for record in qualifying[:max_incorrect]]

        remaining = total_size - len(incorrect_ids)
        regular_cards = self.due_cards(
            cards, now, include_new=include_new, sort_by=sort_by, exclude=incorrect_ids
        )
        regular_ids = [card.item_id for card in regular_cards[:remaining]]

        session = ReviewSession(
            user_id=user_id,
            target_size=total_size,
            session_type=self._session_type(len(incorrect_ids), total_size),
            incorrect_priority=incorrect_ids,
            regular=regular_ids,
        )

        if session.size < total_size:
            warning = InsufficientDataWarning.for_session(total_size, session.size)
            session.warnings.append(warning)
            logger.warning(f"Session for {user_id}: {warning.message}")

        logger.info(
            f"Session built for {user_id}: {len(incorrect_ids)} incorrect-priority + "
            f"{len(regular_ids)} regular = {session.size}/{total_size} "
            f"({session.session_type.value})"
        )
        return session

    def _session_type(self, incorrect_count: int, total_size: int) -> SessionType:
        if incorrect_count == 0:
            return SessionType.REGULAR
        if incorrect_count >= total_size * INCORRECT_FOCUS_SHARE:
            return SessionType.INCORRECT_FOCUS
        return SessionType.MIXED

    def _order(self, cards: list[Card], sort_by: SortBy, now: datetime) -> list[Card]:
        if self.rng is not None:
            tiebreak = {card.item_id: self.rng.random() for card in cards}
        else:
            tiebreak = {card.item_id: card.item_id for card in cards}

        if sort_by == SortBy.DUE_DATE:
            return sorted(cards, key=lambda c: (c.next_review, tiebreak[c.item_id]))
        if sort_by == SortBy.DIFFICULTY:
            return sorted(cards, key=lambda c: (-c.difficulty_factor, tiebreak[c.item_id]))

        scores = {card.item_id: self.priority_score(card, now) for card in cards}
        return sorted(cards, key=lambda c: (-scores[c.item_id], tiebreak[c.item_id]))

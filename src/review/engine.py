"""
Review Engine - one entry point over scoring, scheduling and session building.

Flow per review event:
    raw answer -> QualityScorer -> CardScheduler.update (MemoryModel inside)
    -> card saved -> mistake log appended (if wrong) -> review logged

Later, build_session reads the saved cards and mistake log to compose the
next session.

The engine assumes a single writer per card; concurrent submissions for
the same card must be serialized by the caller.
"""

from __future__ import annotations

import math
import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, TypeVar

import pydantic
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from src.review.card_scheduler import CardScheduler, ScheduleResult
from src.review.config import SchedulerConfig
from src.review.errors import ValidationError
from src.review.memory_model import MemoryModel, RetentionForecast
from src.review.models import (
    Card,
    ItemType,
    MistakeRecord,
    MistakeType,
    ReviewSession,
    SortBy,
    clamp,
    ensure_utc,
    new_card,
    utc_now,
)
from src.review.ports import ReviewStore
from src.review.priority_queue import (
    MistakeStatistics,
    PriorityQueue,
    append_mistake,
    mistake_statistics,
)
from src.review.quality_scorer import QualityResult, QualityScorer

MAX_BATCH_SIZE = 100

ModelT = TypeVar("ModelT", bound=BaseModel)


# ========================================
# Request Models
# ========================================


class ReviewEvent(BaseModel):
    """One answer to one item, as produced by the answer-evaluation pipeline."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    item_id: str = Field(..., min_length=1, validation_alias=AliasChoices("item_id", "itemId"))
    item_type: ItemType = Field(
        ItemType.SENTENCE, validation_alias=AliasChoices("item_type", "itemType")
    )
    user_answer_text: str = Field(
        "", validation_alias=AliasChoices("user_answer_text", "userAnswerText")
    )
    reference_answer_text: str = Field(
        "", validation_alias=AliasChoices("reference_answer_text", "referenceAnswerText")
    )
    recognizer_confidence: float = Field(
        0.0,
        validation_alias=AliasChoices("recognizer_confidence", "recognizerConfidence"),
        description="Speech/recognizer confidence, clamped to 0-1",
    )
    similarity_score: float = Field(
        0.0,
        validation_alias=AliasChoices("similarity_score", "similarityScore"),
        description="Answer similarity, clamped to 0-100",
    )
    response_time_ms: float | None = Field(
        None, validation_alias=AliasChoices("response_time_ms", "responseTimeMs")
    )
    is_correct: bool | None = Field(
        None,
        validation_alias=AliasChoices("is_correct", "isCorrect"),
        description="Explicit verdict; derived from similarity_score when absent",
    )
    mistake_type: MistakeType = Field(
        MistakeType.STRUCTURE, validation_alias=AliasChoices("mistake_type", "mistakeType")
    )

    @field_validator("recognizer_confidence", mode="after")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return clamp(value, 0.0, 1.0) if not math.isnan(value) else 0.0

    @field_validator("similarity_score", mode="after")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return clamp(value, 0.0, 100.0) if not math.isnan(value) else 0.0

    @field_validator("response_time_ms", mode="after")
    @classmethod
    def _clamp_response_time(cls, value: float | None) -> float | None:
        if value is None or not math.isfinite(value):
            return None
        return max(0.0, value)

    def verdict(self, correct_score_threshold: float) -> bool:
        if self.is_correct is not None:
            return self.is_correct
        return self.similarity_score > correct_score_threshold


class SessionQuery(BaseModel):
    """Parameters of a session request."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    limit: int = Field(20, ge=1, le=100, description="Target session size")
    include_new: bool = Field(True, validation_alias=AliasChoices("include_new", "includeNew"))
    sort_by: SortBy = Field(SortBy.PRIORITY, validation_alias=AliasChoices("sort_by", "sortBy"))
    incorrect_ratio: float = Field(
        0.7, ge=0.0, le=1.0, validation_alias=AliasChoices("incorrect_ratio", "incorrectRatio")
    )


def parse_request(model: type[ModelT], data: ModelT | Mapping[str, Any]) -> ModelT:
    """Validate a request, reporting failures as a field-level ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"]) or model.__name__
        raise ValidationError(field_name, first["msg"]) from e


# ========================================
# Results
# ========================================


@dataclass
class ReviewOutcome:
    """Everything one review event changed."""

    event: ReviewEvent
    is_correct: bool
    quality: QualityResult
    schedule: ScheduleResult
    mistake: MistakeRecord | None = None

    @property
    def card(self) -> Card:
        return self.schedule.card

    @property
    def chronic_difficulty(self) -> bool:
        return self.schedule.chronic_difficulty


@dataclass
class BatchFailure:
    """A batch item that was rejected."""

    index: int
    item_id: str | None
    field: str
    message: str


@dataclass
class BatchResult:
    outcomes: list[ReviewOutcome] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> int:
        return len(self.failures)


# ========================================
# Engine
# ========================================


class ReviewEngine:
    """
    Facade over the four review components and a ReviewStore.

    Example:
        engine = ReviewEngine(InMemoryStore())
        engine.submit_review({"user_id": "u1", "item_id": "s1",
                              "recognizer_confidence": 0.9, "similarity_score": 95})
        session = engine.build_session({"user_id": "u1", "limit": 20})
    """

    def __init__(
        self,
        store: ReviewStore,
        config: SchedulerConfig | None = None,
        scorer: QualityScorer | None = None,
        scheduler: CardScheduler | None = None,
        queue: PriorityQueue | None = None,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.config = config or SchedulerConfig()
        self.memory = MemoryModel(self.config)
        self.scorer = scorer or QualityScorer()
        self.scheduler = scheduler or CardScheduler(self.config, self.memory)
        self.queue = queue or PriorityQueue(self.config, self.memory, rng)

    # =========================================================================
    # Reviews
    # =========================================================================

    def submit_review(
        self,
        event: ReviewEvent | Mapping[str, Any],
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """
        Score, schedule and persist one review event.

        Args:
            event: ReviewEvent or a mapping with its fields (camelCase accepted)
            now: Review instant (defaults to the current UTC time)

        Returns:
            ReviewOutcome with the quality grade, updated card and mistake record

        Raises:
            ValidationError: malformed event
        """
        event = parse_request(ReviewEvent, event)
        now = ensure_utc(now or utc_now())

        is_correct = event.verdict(self.config.correct_score_threshold)
        response_seconds = event.response_time_ms / 1000 if event.response_time_ms else None
        quality = self.scorer.calculate_quality(
            is_correct,
            event.recognizer_confidence,
            event.similarity_score,
            response_seconds,
        )

        card = self.store.get_card(event.user_id, event.item_id)
        if card is None:
            card = new_card(event.user_id, event.item_id, event.item_type, self.config, now)
            logger.debug(f"New card for {event.user_id}/{event.item_id}")

        schedule = self.scheduler.update(
            card, quality.quality, now=now, response_time_ms=event.response_time_ms or 0
        )
        self.store.save_card(schedule.card)
        self.store.log_review(
            event.user_id, event.item_id, quality.quality, event.response_time_ms or 0, now
        )

        mistake = None
        if not is_correct:
            mistake = self.record_mistake(event, now)

        logger.info(
            f"Review {event.user_id}/{event.item_id}: correct={is_correct}, "
            f"quality={quality.quality}, state={schedule.card.learning_state.value}, "
            f"next_review={schedule.card.next_review.isoformat()}"
        )

        return ReviewOutcome(
            event=event,
            is_correct=is_correct,
            quality=quality,
            schedule=schedule,
            mistake=mistake,
        )

    def review_with_quality(
        self,
        user_id: str,
        item_id: str,
        quality: int,
        now: datetime | None = None,
        response_time_ms: float = 0,
        item_type: ItemType = ItemType.SENTENCE,
    ) -> ScheduleResult:
        """Schedule a card from an already-known quality grade."""
        now = ensure_utc(now or utc_now())
        card = self.store.get_card(user_id, item_id) or new_card(
            user_id, item_id, item_type, self.config, now
        )
        schedule = self.scheduler.update(card, quality, now=now, response_time_ms=response_time_ms)
        self.store.save_card(schedule.card)
        self.store.log_review(user_id, item_id, schedule.quality, response_time_ms, now)
        return schedule

    def submit_batch(
        self,
        events: Iterable[ReviewEvent | Mapping[str, Any]],
        now: datetime | None = None,
    ) -> BatchResult:
        """
        Submit 1-100 review events.

        Each event is processed independently: a rejected event is reported
        in failures and does not stop the rest. Nothing is retried.

        Raises:
            ValidationError: batch empty or larger than 100
        """
        events = list(events)
        if not 1 <= len(events) <= MAX_BATCH_SIZE:
            raise ValidationError("events", f"batch must contain 1-{MAX_BATCH_SIZE} events")

        result = BatchResult()
        for index, event in enumerate(events):
            try:
                result.outcomes.append(self.submit_review(event, now))
            except ValidationError as e:
                item_id = (
                    event.get("item_id") or event.get("itemId")
                    if isinstance(event, Mapping)
                    else getattr(event, "item_id", None)
                )
                result.failures.append(BatchFailure(index, item_id, e.field, e.message))
                logger.warning(f"Batch item {index} rejected: {e}")

        logger.info(f"Batch processed: {result.processed} succeeded, {result.failed} failed")
        return result

    def record_mistake(self, event: ReviewEvent, now: datetime | None = None) -> MistakeRecord:
        """Append a wrong answer to the learner's mistake log."""
        now = ensure_utc(now or utc_now())
        record = self.store.get_mistake(event.user_id, event.item_id) or MistakeRecord(
            sentence_id=event.item_id, user_id=event.user_id
        )
        updated = append_mistake(
            record,
            event.mistake_type,
            event.user_answer_text,
            event.reference_answer_text,
            now,
            self.config,
        )
        self.store.save_mistake(updated)
        return updated

    def set_suspended(self, user_id: str, item_id: str, suspended: bool = True) -> Card:
        """Suspend or resume a card. Suspended cards never enter a session."""
        card = self.store.get_card(user_id, item_id)
        if card is None:
            raise ValidationError("item_id", f"no card for {user_id}/{item_id}")
        updated = replace(card, suspended=suspended)
        self.store.save_card(updated)
        logger.info(f"Card {user_id}/{item_id} {'suspended' if suspended else 'resumed'}")
        return updated

    # =========================================================================
    # Queries
    # =========================================================================

    def build_session(
        self,
        query: SessionQuery | Mapping[str, Any],
        now: datetime | None = None,
    ) -> ReviewSession:
        """
        Compose the next review session for a learner.

        Raises:
            ValidationError: malformed query (e.g. limit outside 1-100)
        """
        query = parse_request(SessionQuery, query)
        now = ensure_utc(now or utc_now())

        cards = self.store.list_cards(query.user_id)
        since = now - timedelta(days=self.config.mistake_window_days)
        mistakes = self.store.list_mistakes(query.user_id, since)

        return self.queue.build_session(
            query.user_id,
            cards,
            mistakes,
            total_size=query.limit,
            incorrect_ratio=query.incorrect_ratio,
            now=now,
            include_new=query.include_new,
            sort_by=query.sort_by,
        )

    def due_cards(
        self,
        user_id: str,
        now: datetime | None = None,
        include_new: bool = True,
        sort_by: SortBy = SortBy.PRIORITY,
        limit: int | None = None,
    ) -> list[Card]:
        cards = self.queue.due_cards(
            self.store.list_cards(user_id), now, include_new=include_new, sort_by=sort_by
        )
        return cards[:limit] if limit is not None else cards

    def forecast(self, user_id: str, item_id: str, now: datetime | None = None) -> RetentionForecast:
        card = self.store.get_card(user_id, item_id)
        if card is None:
            raise ValidationError("item_id", f"no card for {user_id}/{item_id}")
        return self.memory.forecast(card, now)

    def mistake_statistics(self, user_id: str, now: datetime | None = None) -> MistakeStatistics:
        return mistake_statistics(self.store.list_mistakes(user_id), now, self.config)

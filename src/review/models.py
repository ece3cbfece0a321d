"""
Review Engine Data Model.

Typed records for the engine's persisted state and their boundary
validators:
- Card: one learner's relationship to one learnable item
- MistakeRecord: a learner's wrong answers on one item (bounded ring)
- ReviewSession: ephemeral output of the session composer

Records coming from storage go through validate_card / validate_mistake_record.
Missing identity fields and malformed types are rejected; numeric fields
outside their bounds are clamped.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from src.review.config import SchedulerConfig
from src.review.errors import InsufficientDataWarning, ValidationError

T = TypeVar("T")

# Data-model bounds (closed intervals)
EASE_BOUNDS = (1.3, 3.5)
STRENGTH_BOUNDS = (0.0, 1.0)
STABILITY_BOUNDS = (0.1, 365.0)
DIFFICULTY_BOUNDS = (0.1, 5.0)

RECENT_MISTAKE_CAPACITY = 10


# =============================================================================
# Enums
# =============================================================================


class ItemType(str, Enum):
    """Kind of learnable item a card points at."""

    SENTENCE = "sentence"
    PATTERN = "pattern"
    VOCABULARY = "vocabulary"


class LearningState(str, Enum):
    """Scheduler state of a card."""

    NEW = "NEW"
    LEARNING = "LEARNING"
    REVIEW = "REVIEW"
    RELEARNING = "RELEARNING"


class MistakeType(str, Enum):
    """Classification of a wrong answer."""

    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"
    SPELLING = "spelling"
    STRUCTURE = "structure"


class SessionType(str, Enum):
    """Composition of a review session."""

    INCORRECT_FOCUS = "incorrect_focus"
    MIXED = "mixed"
    REGULAR = "regular"


class SortBy(str, Enum):
    """Ordering rule for the regular slice of a session."""

    PRIORITY = "priority"
    DUE_DATE = "due_date"
    DIFFICULTY = "difficulty"


# =============================================================================
# Helpers
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# =============================================================================
# Records
# =============================================================================


@dataclass
class Card:
    """Scheduling and memory state of one (learner, item) pair."""

    user_id: str
    item_id: str
    item_type: ItemType = ItemType.SENTENCE
    card_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Discrete scheduling state
    ease_factor: float = 2.5
    interval: float = 1.0  # Days
    repetition_count: int = 0
    learning_state: LearningState = LearningState.NEW
    learning_step: int = 0  # Index into the active (re)learning step list
    graduated: bool = False
    suspended: bool = False

    # Continuous memory state
    memory_strength: float = 0.5
    stability_factor: float = 1.0
    difficulty_factor: float = 1.0
    success_rate: float = 0.0

    # History
    last_reviewed: datetime | None = None
    next_review: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    total_reviews: int = 0
    correct_streak: int = 0
    lapses: int = 0
    average_response_time: float = 0.0  # Milliseconds
    last_quality: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.item_id)

    def is_due(self, now: datetime | None = None) -> bool:
        """Due when next_review has passed and the card is not suspended."""
        now = ensure_utc(now or utc_now())
        return not self.suspended and self.next_review <= now

    def is_overdue(self, now: datetime | None = None) -> bool:
        """More than one day past due."""
        now = ensure_utc(now or utc_now())
        return not self.suspended and (now - self.next_review) > timedelta(days=1)

    def days_since_last_review(self, now: datetime | None = None) -> int:
        if self.last_reviewed is None:
            return 0
        now = ensure_utc(now or utc_now())
        return max(0, (now - self.last_reviewed).days)

    def days_until_next_review(self, now: datetime | None = None) -> int:
        now = ensure_utc(now or utc_now())
        return math.ceil((self.next_review - now).total_seconds() / 86400)

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "user_id": self.user_id,
            "item_id": self.item_id,
            "item_type": self.item_type.value,
            "ease_factor": self.ease_factor,
            "interval": self.interval,
            "repetition_count": self.repetition_count,
            "learning_state": self.learning_state.value,
            "learning_step": self.learning_step,
            "graduated": self.graduated,
            "suspended": self.suspended,
            "memory_strength": self.memory_strength,
            "stability_factor": self.stability_factor,
            "difficulty_factor": self.difficulty_factor,
            "success_rate": self.success_rate,
            "last_reviewed": self.last_reviewed.isoformat() if self.last_reviewed else None,
            "next_review": self.next_review.isoformat(),
            "created_at": self.created_at.isoformat(),
            "total_reviews": self.total_reviews,
            "correct_streak": self.correct_streak,
            "lapses": self.lapses,
            "average_response_time": self.average_response_time,
            "last_quality": self.last_quality,
        }


@dataclass
class MistakeEntry:
    """A single wrong answer."""

    timestamp: datetime
    mistake_type: MistakeType
    user_answer: str = ""
    correct_answer: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "mistake_type": self.mistake_type.value,
            "user_answer": self.user_answer,
            "correct_answer": self.correct_answer,
        }


@dataclass
class MistakeRecord:
    """
    A learner's wrong answers on one item.

    recent_mistakes is a ring of at most RECENT_MISTAKE_CAPACITY entries.
    weight is derived and recomputed on every append.
    """

    sentence_id: str
    user_id: str
    incorrect_count: int = 0
    last_incorrect_date: datetime | None = None
    recent_mistakes: list[MistakeEntry] = field(default_factory=list)
    weight: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sentence_id": self.sentence_id,
            "user_id": self.user_id,
            "incorrect_count": self.incorrect_count,
            "last_incorrect_date": (
                self.last_incorrect_date.isoformat() if self.last_incorrect_date else None
            ),
            "recent_mistakes": [m.to_dict() for m in self.recent_mistakes],
            "weight": self.weight,
        }


@dataclass
class ReviewSession:
    """A bounded review session. Not persisted by the engine."""

    user_id: str
    target_size: int
    session_type: SessionType
    incorrect_priority: list[str] = field(default_factory=list)
    regular: list[str] = field(default_factory=list)
    warnings: list[InsufficientDataWarning] = field(default_factory=list)

    @property
    def item_ids(self) -> list[str]:
        """Incorrect-priority items first, then regular items."""
        return [*self.incorrect_priority, *self.regular]

    @property
    def size(self) -> int:
        return len(self.incorrect_priority) + len(self.regular)


# =============================================================================
# Boundary validation
# =============================================================================


@dataclass
class ValidationResult(Generic[T]):
    """Either a validated value or the errors that prevented it."""

    value: T | None = None
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def unwrap(self) -> T:
        if self.errors:
            raise self.errors[0]
        return self.value


# camelCase keys written by the JavaScript review service
_CARD_KEY_ALIASES = {
    "id": "card_id",
    "userId": "user_id",
    "itemId": "item_id",
    "itemType": "item_type",
    "easeFactor": "ease_factor",
    "repetition": "repetition_count",
    "repetitionCount": "repetition_count",
    "learningState": "learning_state",
    "learningStep": "learning_step",
    "memoryStrength": "memory_strength",
    "stabilityFactor": "stability_factor",
    "difficultyFactor": "difficulty_factor",
    "successRate": "success_rate",
    "lastReviewed": "last_reviewed",
    "nextReview": "next_review",
    "createdAt": "created_at",
    "totalReviews": "total_reviews",
    "correctStreak": "correct_streak",
    "averageResponseTime": "average_response_time",
    "quality": "last_quality",
    "lastQuality": "last_quality",
}

_MISTAKE_KEY_ALIASES = {
    "sentenceId": "sentence_id",
    "userId": "user_id",
    "incorrectCount": "incorrect_count",
    "lastIncorrectDate": "last_incorrect_date",
    "recentMistakes": "recent_mistakes",
    "mistakeType": "mistake_type",
    "userAnswer": "user_answer",
    "correctAnswer": "correct_answer",
}


class _FieldReader:
    """Reads typed fields out of a raw mapping, collecting errors."""

    def __init__(self, data: Mapping[str, Any], aliases: dict[str, str]):
        self.data = {aliases.get(k, k): v for k, v in data.items()}
        self.errors: list[ValidationError] = []

    def identity(self, name: str) -> str:
        value = self.data.get(name)
        if not isinstance(value, str) or not value.strip():
            self.errors.append(ValidationError(name, "is required and must be a non-empty string"))
            return ""
        return value.strip()

    def text(self, name: str, default: str = "") -> str:
        value = self.data.get(name)
        if value is None:
            return default
        if not isinstance(value, str):
            self.errors.append(ValidationError(name, "must be a string"))
            return default
        return value

    def number(self, name: str, default: float, low: float, high: float) -> float:
        value = self.data.get(name)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.errors.append(ValidationError(name, "must be a number"))
            return default
        if not math.isfinite(value):
            return default
        return clamp(float(value), low, high)

    def count(self, name: str, default: int = 0) -> int:
        return int(self.number(name, default, 0, math.inf))

    def flag(self, name: str, default: bool = False) -> bool:
        value = self.data.get(name)
        if value is None:
            return default
        if not isinstance(value, bool):
            self.errors.append(ValidationError(name, "must be a boolean"))
            return default
        return value

    def enum(self, name: str, enum_type: type[Enum], default: Enum) -> Any:
        value = self.data.get(name)
        if value is None:
            return default
        if isinstance(value, enum_type):
            return value
        for member in enum_type:
            if isinstance(value, str) and value.lower() == member.value.lower():
                return member
        allowed = ", ".join(m.value for m in enum_type)
        self.errors.append(ValidationError(name, f"must be one of: {allowed}"))
        return default

    def timestamp(self, name: str, default: datetime | None) -> datetime | None:
        value = self.data.get(name)
        if value is None:
            return default
        if isinstance(value, datetime):
            return ensure_utc(value)
        if isinstance(value, str):
            try:
                return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
            except ValueError:
                pass
        self.errors.append(ValidationError(name, "must be an ISO-8601 timestamp"))
        return default


def validate_card(
    data: Mapping[str, Any],
    config: SchedulerConfig | None = None,
) -> ValidationResult[Card]:
    """
    Validate a persisted card document.

    Args:
        data: Raw document (snake_case or camelCase keys)
        config: Scheduler config supplying the ease bounds (defaults used if None)

    Returns:
        ValidationResult holding the Card or the field-level errors
    """
    if not isinstance(data, Mapping):
        return ValidationResult(errors=[ValidationError("card", "must be a mapping")])

    ease_low, ease_high = (
        (config.sm2_min_ease_factor, config.sm2_max_ease_factor) if config else EASE_BOUNDS
    )
    initial_ease = config.sm2_initial_ease if config else 2.5
    now = utc_now()
    r = _FieldReader(data, _CARD_KEY_ALIASES)

    user_id = r.identity("user_id")
    item_id = r.identity("item_id")
    last_reviewed = r.timestamp("last_reviewed", None)
    next_review = r.timestamp("next_review", now)
    if last_reviewed is not None and next_review < last_reviewed:
        next_review = last_reviewed

    last_quality = r.data.get("last_quality")
    if last_quality is not None:
        last_quality = int(r.number("last_quality", 0, 0, 5))

    card = Card(
        user_id=user_id,
        item_id=item_id,
        item_type=r.enum("item_type", ItemType, ItemType.SENTENCE),
        card_id=r.text("card_id") or str(uuid.uuid4()),
        ease_factor=r.number("ease_factor", initial_ease, ease_low, ease_high),
        interval=r.number("interval", 1.0, 0.0, math.inf),
        repetition_count=r.count("repetition_count"),
        learning_state=r.enum("learning_state", LearningState, LearningState.NEW),
        learning_step=r.count("learning_step"),
        graduated=r.flag("graduated"),
        suspended=r.flag("suspended"),
        memory_strength=r.number("memory_strength", 0.5, *STRENGTH_BOUNDS),
        stability_factor=r.number("stability_factor", 1.0, *STABILITY_BOUNDS),
        difficulty_factor=r.number("difficulty_factor", 1.0, *DIFFICULTY_BOUNDS),
        success_rate=r.number("success_rate", 0.0, 0.0, 1.0),
        last_reviewed=last_reviewed,
        next_review=next_review,
        created_at=r.timestamp("created_at", now),
        total_reviews=r.count("total_reviews"),
        correct_streak=r.count("correct_streak"),
        lapses=r.count("lapses"),
        average_response_time=r.number("average_response_time", 0.0, 0.0, math.inf),
        last_quality=last_quality,
    )

    if r.errors:
        return ValidationResult(errors=r.errors)
    return ValidationResult(value=card)


def validate_mistake_record(data: Mapping[str, Any]) -> ValidationResult[MistakeRecord]:
    """Validate a stored mistake record; the ring keeps its newest entries."""
    if not isinstance(data, Mapping):
        return ValidationResult(errors=[ValidationError("mistake_record", "must be a mapping")])

    r = _FieldReader(data, _MISTAKE_KEY_ALIASES)
    sentence_id = r.identity("sentence_id")
    user_id = r.identity("user_id")

    raw_entries = r.data.get("recent_mistakes") or []
    entries: list[MistakeEntry] = []
    if not isinstance(raw_entries, list):
        r.errors.append(ValidationError("recent_mistakes", "must be a list"))
        raw_entries = []

    for index, raw in enumerate(raw_entries):
        if isinstance(raw, MistakeEntry):
            entries.append(raw)
            continue
        if not isinstance(raw, Mapping):
            r.errors.append(ValidationError(f"recent_mistakes[{index}]", "must be a mapping"))
            continue
        entry_reader = _FieldReader(raw, _MISTAKE_KEY_ALIASES)
        timestamp = entry_reader.timestamp("timestamp", None)
        if timestamp is None and not entry_reader.errors:
            entry_reader.errors.append(ValidationError("timestamp", "is required"))
        mistake_type = entry_reader.enum("mistake_type", MistakeType, MistakeType.STRUCTURE)
        user_answer = entry_reader.text("user_answer")
        correct_answer = entry_reader.text("correct_answer")
        for error in entry_reader.errors:
            r.errors.append(
                ValidationError(f"recent_mistakes[{index}].{error.field}", error.message)
            )
        if not entry_reader.errors:
            entries.append(MistakeEntry(timestamp, mistake_type, user_answer, correct_answer))

    record = MistakeRecord(
        sentence_id=sentence_id,
        user_id=user_id,
        incorrect_count=r.count("incorrect_count"),
        last_incorrect_date=r.timestamp("last_incorrect_date", None),
        recent_mistakes=entries[-RECENT_MISTAKE_CAPACITY:],
        weight=r.number("weight", 0.0, 0.0, math.inf),
    )

    if r.errors:
        return ValidationResult(errors=r.errors)
    return ValidationResult(value=record)


def new_card(
    user_id: str,
    item_id: str,
    item_type: ItemType = ItemType.SENTENCE,
    config: SchedulerConfig | None = None,
    now: datetime | None = None,
) -> Card:
    """Create the NEW card for a learner's first encounter with an item."""
    if not user_id or not user_id.strip():
        raise ValidationError("user_id", "is required and must be a non-empty string")
    if not item_id or not item_id.strip():
        raise ValidationError("item_id", "is required and must be a non-empty string")

    now = ensure_utc(now or utc_now())
    return Card(
        user_id=user_id.strip(),
        item_id=item_id.strip(),
        item_type=item_type,
        ease_factor=config.sm2_initial_ease if config else 2.5,
        interval=1.0,
        memory_strength=0.5,
        next_review=now,
        created_at=now,
    )

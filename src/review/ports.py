"""
Persistence boundary of the review engine.

The engine reads and writes cards and mistake records through these
protocols; any document store that satisfies them can back it.
Stores must serialize writes to the same card themselves.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from src.review.models import Card, MistakeRecord


@runtime_checkable
class CardStore(Protocol):
    def get_card(self, user_id: str, item_id: str) -> Card | None: ...

    def save_card(self, card: Card) -> None: ...

    def list_cards(self, user_id: str) -> list[Card]: ...


@runtime_checkable
class MistakeLog(Protocol):
    def get_mistake(self, user_id: str, sentence_id: str) -> MistakeRecord | None: ...

    def save_mistake(self, record: MistakeRecord) -> None: ...

    def list_mistakes(self, user_id: str, since: datetime | None = None) -> list[MistakeRecord]: ...


@runtime_checkable
class ReviewLog(Protocol):
    def log_review(
        self,
        user_id: str,
        item_id: str,
        quality: int,
        response_ms: float,
        reviewed_at: datetime,
    ) -> int: ...


class ReviewStore(CardStore, MistakeLog, ReviewLog, Protocol):
    """Everything the ReviewEngine needs from persistence."""

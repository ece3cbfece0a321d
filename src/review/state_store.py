"""
State stores for the review engine.

- InMemoryStore: dict-backed, for tests and embedding
- StateStore: SQLite-backed JSON document store

Both satisfy the ReviewStore protocol. Cards and mistake records are kept
as JSON documents and re-validated on load, so a stored document with
out-of-range numbers is clamped and one missing identity fields is rejected.

Database location: ~/.review-engine/state.db
"""

from __future__ import annotations

import copy
import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from loguru import logger

from src.review.config import SchedulerConfig
from src.review.models import (
    Card,
    MistakeRecord,
    ensure_utc,
    utc_now,
    validate_card,
    validate_mistake_record,
)


@dataclass
class ReviewLogEntry:
    """A single logged review."""

    id: int
    user_id: str
    item_id: str
    reviewed_at: datetime
    quality: int
    response_ms: float


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryStore:
    """Dict-backed store. Records are deep-copied in and out."""

    def __init__(self):
        self._cards: dict[tuple[str, str], Card] = {}
        self._mistakes: dict[tuple[str, str], MistakeRecord] = {}
        self._reviews: list[ReviewLogEntry] = []

    def get_card(self, user_id: str, item_id: str) -> Card | None:
        card = self._cards.get((user_id, item_id))
        return copy.deepcopy(card) if card else None

    def save_card(self, card: Card) -> None:
        self._cards[card.key] = copy.deepcopy(card)

    def list_cards(self, user_id: str) -> list[Card]:
        return [copy.deepcopy(c) for (uid, _), c in sorted(self._cards.items()) if uid == user_id]

    def get_mistake(self, user_id: str, sentence_id: str) -> MistakeRecord | None:
        record = self._mistakes.get((user_id, sentence_id))
        return copy.deepcopy(record) if record else None

    def save_mistake(self, record: MistakeRecord) -> None:
        self._mistakes[(record.user_id, record.sentence_id)] = copy.deepcopy(record)

    def list_mistakes(self, user_id: str, since: datetime | None = None) -> list[MistakeRecord]:
        records = []
        for (uid, _), record in sorted(self._mistakes.items()):
            if uid != user_id:
                continue
            if since is not None and (
                record.last_incorrect_date is None or record.last_incorrect_date < since
            ):
                continue
            records.append(copy.deepcopy(record))
        return records

    def log_review(
        self,
        user_id: str,
        item_id: str,
        quality: int,
        response_ms: float,
        reviewed_at: datetime,
    ) -> int:
        entry_id = len(self._reviews) + 1
        self._reviews.append(
            ReviewLogEntry(entry_id, user_id, item_id, reviewed_at, quality, response_ms)
        )
        return entry_id

    def get_review_history(self, user_id: str, item_id: str, limit: int = 10) -> list[ReviewLogEntry]:
        history = [r for r in self._reviews if r.user_id == user_id and r.item_id == item_id]
        return list(reversed(history))[:limit]


# =============================================================================
# SQLite store
# =============================================================================


class StateStore:
    """
    SQLite-backed persistence for cards, mistake records and the review log.

    Tables:
    - cards: one JSON document per (user_id, item_id)
    - mistakes: one JSON document per (user_id, sentence_id)
    - review_log: append-only review events
    """

    DEFAULT_DB_PATH = Path.home() / ".review-engine" / "state.db"

    def __init__(self, db_path: Path | str | None = None, config: SchedulerConfig | None = None):
        """
        Initialize the state store.

        Args:
            db_path: Custom database path (defaults to ~/.review-engine/state.db)
            config: Scheduler config used to validate loaded cards
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.config = config

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.info(f"StateStore initialized at {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cards (
                user_id TEXT NOT NULL,
                item_id TEXT NOT NULL,
                next_review TEXT NOT NULL,
                document TEXT NOT NULL,
                PRIMARY KEY (user_id, item_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS mistakes (
                user_id TEXT NOT NULL,
                sentence_id TEXT NOT NULL,
                last_incorrect_date TEXT,
                document TEXT NOT NULL,
                PRIMARY KEY (user_id, sentence_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS review_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                item_id TEXT NOT NULL,
                reviewed_at TEXT NOT NULL,
                quality INTEGER NOT NULL,
                response_ms REAL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_cards_next_review
            ON cards(user_id, next_review)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_review_log_item
            ON review_log(user_id, item_id)
        """)

        self.conn.commit()

    # =========================================================================
    # Cards
    # =========================================================================

    def get_card(self, user_id: str, item_id: str) -> Card | None:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT document FROM cards WHERE user_id = ? AND item_id = ?",
            (user_id, item_id),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return validate_card(json.loads(row["document"]), self.config).unwrap()

    def save_card(self, card: Card) -> None:
        """
        Insert or replace a card document.

        Args:
            card: Card to persist
        """
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO cards (user_id, item_id, next_review, document)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, item_id) DO UPDATE SET
                next_review = excluded.next_review,
                document = excluded.document
        """,
            (
                card.user_id,
                card.item_id,
                card.next_review.isoformat(timespec="microseconds"),
                json.dumps(card.to_dict()),
            ),
        )
        self.conn.commit()

    def list_cards(self, user_id: str) -> list[Card]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT document FROM cards WHERE user_id = ? ORDER BY item_id",
            (user_id,),
        )
        return [
            validate_card(json.loads(row["document"]), self.config).unwrap()
            for row in cursor.fetchall()
        ]

    # =========================================================================
    # Mistake log
    # =========================================================================

    def get_mistake(self, user_id: str, sentence_id: str) -> MistakeRecord | None:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT document FROM mistakes WHERE user_id = ? AND sentence_id = ?",
            (user_id, sentence_id),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return validate_mistake_record(json.loads(row["document"])).unwrap()

    def save_mistake(self, record: MistakeRecord) -> None:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO mistakes (user_id, sentence_id, last_incorrect_date, document)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, sentence_id) DO UPDATE SET
                last_incorrect_date = excluded.last_incorrect_date,
                document = excluded.document
        """,
            (
                record.user_id,
                record.sentence_id,
                record.last_incorrect_date.isoformat(timespec="microseconds") if record.last_incorrect_date else None,
                json.dumps(record.to_dict()),
            ),
        )
        self.conn.commit()

    def list_mistakes(self, user_id: str, since: datetime | None = None) -> list[MistakeRecord]:
        """
        Mistake records of a learner.

        Args:
            user_id: Learner
            since: Only records whose last mistake is at or after this instant
        """
        records = []
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT document FROM mistakes WHERE user_id = ? ORDER BY sentence_id",
            (user_id,),
        )
        for row in cursor.fetchall():
            record = validate_mistake_record(json.loads(row["document"])).unwrap()
            if since is not None and (
                record.last_incorrect_date is None
                or record.last_incorrect_date < ensure_utc(since)
            ):
                continue
            records.append(record)
        return records

    # =========================================================================
    # Review log
    # =========================================================================

    def log_review(
        self,
        user_id: str,
        item_id: str,
        quality: int,
        response_ms: float,
        reviewed_at: datetime | None = None,
    ) -> int:
        """
        Log a review event.

        Returns:
            Review log row ID
        """
        reviewed_at = ensure_utc(reviewed_at or utc_now())
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO review_log (user_id, item_id, reviewed_at, quality, response_ms)
            VALUES (?, ?, ?, ?, ?)
        """,
            (user_id, item_id, reviewed_at.isoformat(timespec="microseconds"), quality, response_ms),
        )
        self.conn.commit()
        return cursor.lastrowid

    def get_review_history(self, user_id: str, item_id: str, limit: int = 10) -> list[ReviewLogEntry]:
        """Logged reviews of one card, most recent first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM review_log
            WHERE user_id = ? AND item_id = ?
            ORDER BY reviewed_at DESC, id DESC
            LIMIT ?
        """,
            (user_id, item_id, limit),
        )
        return [
            ReviewLogEntry(
                id=row["id"],
                user_id=row["user_id"],
                item_id=row["item_id"],
                reviewed_at=datetime.fromisoformat(row["reviewed_at"]),
                quality=row["quality"],
                response_ms=row["response_ms"],
            )
            for row in cursor.fetchall()
        ]

    def get_stats(self, user_id: str) -> dict:
        """Card, due-card (unsuspended), mistake and review counts for a learner."""
        cursor = self.conn.cursor()
        now = utc_now().isoformat(timespec="microseconds")

        cursor.execute("SELECT COUNT(*) AS cnt FROM cards WHERE user_id = ?", (user_id,))
        total_cards = cursor.fetchone()["cnt"]

        cursor.execute(
            """
            SELECT COUNT(*) AS cnt FROM cards
            WHERE user_id = ? AND next_review <= ?
            AND COALESCE(json_extract(document, '$.suspended'), 0) = 0
        """,
            (user_id, now),
        )
        due_cards = cursor.fetchone()["cnt"]

        cursor.execute("SELECT COUNT(*) AS cnt FROM mistakes WHERE user_id = ?", (user_id,))
        mistake_records = cursor.fetchone()["cnt"]

        cursor.execute(
            "SELECT COUNT(*) AS cnt, AVG(quality) AS avg_quality FROM review_log WHERE user_id = ?",
            (user_id,),
        )
        row = cursor.fetchone()

        return {
            "total_cards": total_cards,
            "due_cards": due_cards,
            "mistake_records": mistake_records,
            "total_reviews": row["cnt"],
            "average_quality": round(row["avg_quality"] or 0.0, 2),
        }

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

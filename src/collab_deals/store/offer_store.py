"""SQLite-backed offer store with version-checked updates."""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from collab_deals.errors import StaleOfferVersion
from collab_deals.models.offer import Offer, OfferStatus


class OfferStore:
    """
    SQLite store for offers. Full model is kept as JSON in `data`;
    status/version/sent_at are mirrored into columns for querying and compare-and-swap.
    """

    def __init__(self, db_path: str | Path = "collab_deals.db"):
        self._db_path = Path(db_path)
        self._ensure_schema()

    def _connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        schema_path = Path(__file__).parent / "schema.sql"
        with self._connection() as conn:
            conn.executescript(schema_path.read_text())

    def _serialize(self, offer: Offer) -> str:
        return json.dumps(offer.model_dump(mode="json"), default=str)

    def _deserialize(self, row: sqlite3.Row) -> Offer:
        return Offer.model_validate(json.loads(row["data"]))

    @staticmethod
    def _iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    def create(self, offer: Offer) -> Offer:
        """Insert a new offer."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO offers (id, creator_id, marketer_id, status, version, sent_at, deleted_at, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    offer.id,
                    offer.creator_id,
                    offer.marketer_id,
                    offer.status.value,
                    offer.version,
                    self._iso(offer.sent_at),
                    self._iso(offer.deleted_at),
                    self._serialize(offer),
                    offer.created_at.isoformat(),
                    offer.updated_at.isoformat(),
                ),
            )
            conn.commit()
        return offer

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        One connection committed on success and rolled back on any exception.
        Stores sharing this database accept it as `conn` to write in the same transaction.
        """
        conn = self._connection()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def save(self, offer: Offer, expected_version: int, conn: Optional[sqlite3.Connection] = None) -> Offer:
        """
        Persist offer only if the stored version still equals expected_version.
        The offer passed in must already carry its new (incremented) version.
        """
        if conn is None:
            with self.transaction() as own:
                return self.save(offer, expected_version, own)
        cursor = conn.execute(
            """
            UPDATE offers SET
                status = ?, version = ?, sent_at = ?, deleted_at = ?, data = ?, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (
                offer.status.value,
                offer.version,
                self._iso(offer.sent_at),
                self._iso(offer.deleted_at),
                self._serialize(offer),
                offer.updated_at.isoformat(),
                offer.id,
                expected_version,
            ),
        )
        if cursor.rowcount == 0:
            row = conn.execute("SELECT version FROM offers WHERE id = ?", (offer.id,)).fetchone()
            raise StaleOfferVersion(offer.id, expected_version, row["version"] if row else None)
        return offer

    def get(self, offer_id: str) -> Optional[Offer]:
        """Get single offer by id, including soft-deleted ones."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,)).fetchone()
        return self._deserialize(row) if row else None

    def list_by_status(self, status: OfferStatus, *, include_deleted: bool = False) -> list[Offer]:
        query = "SELECT * FROM offers WHERE status = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY updated_at DESC", (status.value,)).fetchall()
        return [self._deserialize(r) for r in rows]

    def list_for_party(self, user_id: str) -> list[Offer]:
        """Offers where user is creator or marketer, newest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM offers
                WHERE (creator_id = ? OR marketer_id = ?) AND deleted_at IS NULL
                ORDER BY updated_at DESC
                """,
                (user_id, user_id),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def list_sent_before(self, cutoff: datetime) -> list[Offer]:
        """Sent, non-deleted offers whose last Sent transition is older than cutoff."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM offers
                WHERE status = ? AND deleted_at IS NULL AND sent_at IS NOT NULL AND sent_at < ?
                ORDER BY sent_at ASC
                """,
                (OfferStatus.SENT.value, cutoff.isoformat()),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

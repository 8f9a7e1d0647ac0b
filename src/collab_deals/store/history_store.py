"""Append-only ledger of negotiation events."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from collab_deals.models.events import NegotiationEvent
from collab_deals.models.offer import OfferTerms


class NegotiationHistory:
    """SQLite ledger. The only operations are append and list_for; rows are never updated."""

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

    @staticmethod
    def _terms_json(terms: Optional[OfferTerms]) -> Optional[str]:
        return json.dumps(terms.model_dump(mode="json")) if terms is not None else None

    def append(self, event: NegotiationEvent, conn: Optional[sqlite3.Connection] = None) -> NegotiationEvent:
        """
        Append one event. A duplicate (offer_id, sequence) raises sqlite3.IntegrityError.
        Pass `conn` to write inside a caller's transaction; the caller commits.
        """
        if conn is None:
            with self._connection() as own:
                return self.append(event, own)
        conn.execute(
            """
            INSERT INTO negotiation_events
            (offer_id, sequence, action, actor_id, actor_role, previous_terms, new_terms, note, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.offer_id,
                event.sequence,
                event.action.value,
                event.actor_id,
                event.actor_role.value,
                self._terms_json(event.previous_terms),
                self._terms_json(event.new_terms),
                event.note,
                event.timestamp.isoformat(),
            ),
        )
        return event

    def list_for(self, offer_id: str) -> list[NegotiationEvent]:
        """Events for an offer in sequence (offer version) order."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM negotiation_events WHERE offer_id = ?
                ORDER BY sequence ASC
                """,
                (offer_id,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def _row_to_event(self, row: sqlite3.Row) -> NegotiationEvent:
        previous = row["previous_terms"]
        return NegotiationEvent(
            offer_id=row["offer_id"],
            sequence=row["sequence"],
            action=row["action"],
            actor_id=row["actor_id"],
            actor_role=row["actor_role"],
            previous_terms=OfferTerms.model_validate(json.loads(previous)) if previous else None,
            new_terms=OfferTerms.model_validate(json.loads(row["new_terms"])),
            note=row["note"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

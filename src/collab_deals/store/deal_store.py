"""SQLite store for deals and their milestones."""

import json
import sqlite3
from pathlib import Path
from typing import Optional

from collab_deals.errors import IllegalTransition, StaleDealVersion, StaleMilestoneVersion
from collab_deals.models.deal import Deal, Milestone


class DealStore:
    """
    Deals and milestones live in separate tables so each milestone carries its own
    version for optimistic concurrency. A deal's `data` excludes its milestones.
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

    @staticmethod
    def _deal_data(deal: Deal) -> str:
        return json.dumps(deal.model_dump(mode="json", exclude={"milestones"}), default=str)

    @staticmethod
    def _milestone_data(milestone: Milestone) -> str:
        return json.dumps(milestone.model_dump(mode="json"), default=str)

    def create(self, deal: Deal, conn: Optional[sqlite3.Connection] = None) -> Deal:
        """
        Insert deal and milestones atomically. A second deal for the same offer is refused.
        Pass `conn` to insert inside a caller's transaction; the caller commits.
        """
        if conn is None:
            with self._connection() as own:
                return self.create(deal, own)
        try:
            conn.execute(
                """
                INSERT INTO deals (id, offer_id, creator_id, marketer_id, status, version, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    deal.id,
                    deal.offer_id,
                    deal.creator_id,
                    deal.marketer_id,
                    deal.status.value,
                    deal.version,
                    self._deal_data(deal),
                    deal.created_at.isoformat(),
                    deal.updated_at.isoformat(),
                ),
            )
            conn.executemany(
                """
                INSERT INTO milestones (id, deal_id, position, status, version, data)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (m.id, deal.id, m.position, m.status.value, m.version, self._milestone_data(m))
                    for m in deal.milestones
                ],
            )
        except sqlite3.IntegrityError as e:
            raise IllegalTransition(deal.offer_id, "create_deal", "Accepted", "deal already exists") from e
        return deal

    def _milestones_for(self, conn: sqlite3.Connection, deal_id: str) -> list[Milestone]:
        rows = conn.execute(
            "SELECT data FROM milestones WHERE deal_id = ? ORDER BY position ASC", (deal_id,)
        ).fetchall()
        return [Milestone.model_validate(json.loads(r["data"])) for r in rows]

    def _row_to_deal(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Deal:
        data = json.loads(row["data"])
        data["milestones"] = [m.model_dump(mode="json") for m in self._milestones_for(conn, row["id"])]
        return Deal.model_validate(data)

    def get(self, deal_id: str) -> Optional[Deal]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM deals WHERE id = ?", (deal_id,)).fetchone()
            return self._row_to_deal(conn, row) if row else None

    def get_by_offer(self, offer_id: str) -> Optional[Deal]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM deals WHERE offer_id = ?", (offer_id,)).fetchone()
            return self._row_to_deal(conn, row) if row else None

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]:
        with self._connection() as conn:
            row = conn.execute("SELECT data FROM milestones WHERE id = ?", (milestone_id,)).fetchone()
        return Milestone.model_validate(json.loads(row["data"])) if row else None

    def save_deal(self, deal: Deal, expected_version: int) -> Deal:
        """Compare-and-swap on the deal row; milestones are untouched."""
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE deals SET status = ?, version = ?, data = ?, updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    deal.status.value,
                    deal.version,
                    self._deal_data(deal),
                    deal.updated_at.isoformat(),
                    deal.id,
                    expected_version,
                ),
            )
            conn.commit()
            updated = cursor.rowcount
        if updated == 0:
            current = self.get(deal.id)
            raise StaleDealVersion(deal.id, expected_version, current.version if current else None)
        return deal

    def save_milestone(self, milestone: Milestone, expected_version: int) -> Milestone:
        """Compare-and-swap on one milestone row."""
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE milestones SET status = ?, version = ?, data = ?
                WHERE id = ? AND version = ?
                """,
                (
                    milestone.status.value,
                    milestone.version,
                    self._milestone_data(milestone),
                    milestone.id,
                    expected_version,
                ),
            )
            conn.commit()
            updated = cursor.rowcount
        if updated == 0:
            current = self.get_milestone(milestone.id)
            raise StaleMilestoneVersion(
                milestone.id, expected_version, current.version if current else None
            )
        return milestone

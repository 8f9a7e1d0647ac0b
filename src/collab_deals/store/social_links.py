"""Append-only registry of post-verification social links per milestone."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path


@dataclass
class SocialLink:
    milestone_id: str
    url: str
    added_by: str
    added_at: datetime


class SocialLinkRegistry:
    """SQLite collection of social links. Links are appended, never edited or removed."""

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

    def append(self, milestone_id: str, urls: list[str], added_by: str) -> list[SocialLink]:
        now = datetime.now(timezone.utc)
        with self._connection() as conn:
            conn.executemany(
                "INSERT INTO social_links (milestone_id, url, added_by, added_at) VALUES (?, ?, ?, ?)",
                [(milestone_id, url, added_by, now.isoformat()) for url in urls],
            )
            conn.commit()
        return [SocialLink(milestone_id, url, added_by, now) for url in urls]

    def list_for(self, milestone_id: str) -> list[SocialLink]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM social_links WHERE milestone_id = ? ORDER BY id ASC",
                (milestone_id,),
            ).fetchall()
        return [
            SocialLink(
                milestone_id=r["milestone_id"],
                url=r["url"],
                added_by=r["added_by"],
                added_at=datetime.fromisoformat(r["added_at"]),
            )
            for r in rows
        ]

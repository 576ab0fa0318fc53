from __future__ import annotations

from dataclasses import dataclass
from sqlite3 import Connection

from console_memories.app.models.reactions import ReactionCounts, ReactionKind
from console_memories.app.repositories.common import utc_now_iso
from console_memories.app.repositories.database import Database


@dataclass(frozen=True)
class ReactionRecordResult:
    recorded: bool
    reactions: ReactionCounts


@dataclass(frozen=True)
class ViewRecordResult:
    recorded: bool
    view_count: int


class EngagementRepository:
    """
    Visitor-keyed dedup for reactions and views.

    Each recording is one `BEGIN IMMEDIATE` transaction: the log insert relies on
    the log table's primary key (`ON CONFLICT DO NOTHING`) and the tally is bumped
    only when that insert actually wrote a row. A missing visitor skips the log
    and always counts.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def record_reaction(
        self,
        *,
        article_id: str,
        kind: ReactionKind,
        visitor_id: str | None,
    ) -> ReactionRecordResult | None:
        with self._db.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            if not _article_exists(conn, article_id):
                return None

            recorded = True
            if visitor_id is not None:
                inserted = conn.execute(
                    """
                    INSERT INTO reaction_logs (visitor_id, article_id, kind, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(visitor_id, article_id, kind) DO NOTHING
                    """,
                    (visitor_id, article_id, kind.value, utc_now_iso()),
                )
                recorded = inserted.rowcount == 1

            if recorded:
                conn.execute(
                    """
                    INSERT INTO reaction_tallies (article_id, kind, count)
                    VALUES (?, ?, 1)
                    ON CONFLICT(article_id, kind) DO UPDATE SET
                        count = reaction_tallies.count + 1
                    """,
                    (article_id, kind.value),
                )
            reactions = _reaction_counts_with_conn(conn, article_id)

        return ReactionRecordResult(recorded=recorded, reactions=reactions)

    def record_view(self, *, article_id: str, visitor_id: str | None) -> ViewRecordResult | None:
        with self._db.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            if not _article_exists(conn, article_id):
                return None

            recorded = True
            if visitor_id is not None:
                inserted = conn.execute(
                    """
                    INSERT INTO view_logs (visitor_id, article_id, created_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(visitor_id, article_id) DO NOTHING
                    """,
                    (visitor_id, article_id, utc_now_iso()),
                )
                recorded = inserted.rowcount == 1

            if recorded:
                conn.execute(
                    """
                    INSERT INTO view_tallies (article_id, count)
                    VALUES (?, 1)
                    ON CONFLICT(article_id) DO UPDATE SET
                        count = view_tallies.count + 1
                    """,
                    (article_id,),
                )
            view_count = _view_count_with_conn(conn, article_id)

        return ViewRecordResult(recorded=recorded, view_count=view_count)

    def get_reactions(self, article_id: str) -> ReactionCounts:
        with self._db.connection() as conn:
            return _reaction_counts_with_conn(conn, article_id)

    def get_reactions_for_articles(self, article_ids: list[str]) -> dict[str, ReactionCounts]:
        if not article_ids:
            return {}
        placeholders = ", ".join("?" for _ in article_ids)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT article_id, kind, count
                FROM reaction_tallies
                WHERE article_id IN ({placeholders})
                """,
                tuple(article_ids),
            ).fetchall()

        raw: dict[str, dict[str, int]] = {article_id: {} for article_id in article_ids}
        for row in rows:
            raw[str(row["article_id"])][str(row["kind"])] = int(row["count"])
        return {
            article_id: ReactionCounts.from_mapping(counts) for article_id, counts in raw.items()
        }

    def get_view_count(self, article_id: str) -> int:
        with self._db.connection() as conn:
            return _view_count_with_conn(conn, article_id)

    def get_view_counts(self, article_ids: list[str]) -> dict[str, int]:
        if not article_ids:
            return {}
        placeholders = ", ".join("?" for _ in article_ids)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT article_id, count
                FROM view_tallies
                WHERE article_id IN ({placeholders})
                """,
                tuple(article_ids),
            ).fetchall()
        counts = {article_id: 0 for article_id in article_ids}
        for row in rows:
            counts[str(row["article_id"])] = int(row["count"])
        return counts

    def list_visitor_reactions(self, *, article_id: str, visitor_id: str) -> list[ReactionKind]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT kind
                FROM reaction_logs
                WHERE visitor_id = ? AND article_id = ?
                ORDER BY created_at ASC
                """,
                (visitor_id, article_id),
            ).fetchall()
        return [ReactionKind(str(row["kind"])) for row in rows]


def _article_exists(conn: Connection, article_id: str) -> bool:
    row = conn.execute("SELECT 1 FROM articles WHERE id = ?", (article_id,)).fetchone()
    return row is not None


def _reaction_counts_with_conn(conn: Connection, article_id: str) -> ReactionCounts:
    rows = conn.execute(
        """
        SELECT kind, count
        FROM reaction_tallies
        WHERE article_id = ?
        """,
        (article_id,),
    ).fetchall()
    return ReactionCounts.from_mapping({str(row["kind"]): int(row["count"]) for row in rows})


def _view_count_with_conn(conn: Connection, article_id: str) -> int:
    row = conn.execute(
        "SELECT count FROM view_tallies WHERE article_id = ?",
        (article_id,),
    ).fetchone()
    if row is None:
        return 0
    return int(row["count"])

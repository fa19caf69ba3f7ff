from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger

from anu_companion.memory.store import MemoryStore


def prune_history(
    store: MemoryStore,
    *,
    max_sessions: int,
    retention_days: int,
) -> int:
    """Drop expired closed/archived sessions and cap the archive size. Returns rows removed."""
    now = datetime.now(UTC)
    cutoff = (now - timedelta(days=max(1, retention_days))).isoformat(timespec="seconds")
    removed = 0

    cursor = store.execute(
        "DELETE FROM sessions WHERE status != 'active' AND updated_at < ?",
        (cutoff,),
    )
    removed += max(0, cursor.rowcount)

    if max_sessions > 0:
        overflow = store.execute(
            """
            SELECT id
            FROM sessions
            WHERE status = 'archived'
            ORDER BY updated_at DESC
            LIMIT -1 OFFSET ?
            """,
            (max_sessions,),
        ).fetchall()
        if overflow:
            store.executemany(
                "DELETE FROM sessions WHERE id = ?",
                [(str(row["id"]),) for row in overflow],
            )
            removed += len(overflow)

    store.commit()
    if removed:
        logger.info(f"History pruning removed {removed} session(s)")
    return removed

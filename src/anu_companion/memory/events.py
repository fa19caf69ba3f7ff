from __future__ import annotations

import json
from uuid import uuid4

from anu_companion.memory.store import MemoryStore
from anu_companion.models import utc_now


class EventEmitter:
    """Append-only audit trail of lifecycle events (session archived, exercise completed, ...)."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def emit(self, session_id: str | None, event_type: str, payload: dict) -> None:
        self._store.execute(
            """
            INSERT INTO events (id, session_id, type, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                str(uuid4()),
                session_id,
                event_type,
                json.dumps(payload, ensure_ascii=True),
                utc_now(),
            ),
        )
        self._store.commit()

    def list_events(self, *, event_type: str | None = None, limit: int = 50) -> list[dict]:
        if event_type is None:
            rows = self._store.execute(
                "SELECT * FROM events ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (max(1, limit),),
            ).fetchall()
        else:
            rows = self._store.execute(
                "SELECT * FROM events WHERE type = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (event_type, max(1, limit)),
            ).fetchall()
        return [{**dict(row), "payload": json.loads(row["payload_json"])} for row in rows]

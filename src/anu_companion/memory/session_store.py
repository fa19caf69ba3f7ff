from __future__ import annotations

import json
from uuid import uuid4

from loguru import logger

from anu_companion.memory.events import EventEmitter
from anu_companion.memory.store import MemoryStore
from anu_companion.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    RateLimitRecord,
    SummaryArtifact,
    ThoughtPattern,
    utc_now,
)

_RATE_LIMIT_KEY = "daily_messages"
_EXCERPT_CHARS = 50
_MINUTES_PER_EXCHANGE = 2


def estimate_duration(user_message_count: int) -> str:
    """Rough session length: about two minutes per user message."""
    if user_message_count < 1:
        return "< 1 min"
    minutes = max(1, user_message_count * _MINUTES_PER_EXCHANGE)
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}m"


class SessionStore:
    """Append-only message log for the current session, plus the archive and rate-limit record.

    Exactly one session is ``active`` at a time. It is created lazily on the
    first appended message, ``closed`` by ``clear_current_session`` and moved
    to ``archived`` by ``save_to_history``. Closed and archived transcripts
    stay readable by id until pruned, so background work can still see them.
    """

    def __init__(self, store: MemoryStore, events: EventEmitter):
        self._store = store
        self._events = events

    def current_session_id(self) -> str | None:
        row = self._store.execute(
            "SELECT id FROM sessions WHERE status = 'active' ORDER BY created_at DESC, rowid DESC LIMIT 1"
        ).fetchone()
        return str(row["id"]) if row is not None else None

    def get_current_session(self) -> dict | None:
        session_id = self.current_session_id()
        if session_id is None:
            return None
        return self.get_session(session_id)

    def get_session(self, session_id: str) -> dict | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        session = dict(row)
        session["metadata"] = self._parse_json(session.pop("metadata_json"), {})
        session["messages"] = self.load_messages(session_id)
        session["thought_patterns"] = self.get_session_insights(session_id)
        return session

    def create_session(self) -> str:
        sid = str(uuid4())
        now = utc_now()
        self._store.execute(
            """
            INSERT INTO sessions (id, created_at, updated_at, status, metadata_json)
            VALUES (?, ?, ?, 'active', '{}')
            """,
            (sid, now, now),
        )
        self._store.commit()
        self._events.emit(sid, "session.started", {"session_id": sid})
        return sid

    def append_message(self, message: Message) -> str:
        """Append to the current session, creating one on the first message. Returns the session id."""
        session_id = self.current_session_id() or self.create_session()
        row = self._store.execute(
            "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        next_seq = int(row["max_seq"]) + 1
        self._store.execute(
            """
            INSERT INTO messages (id, session_id, seq, role, text, title, exercise_tag, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                session_id,
                next_seq,
                message.role,
                message.text,
                message.title,
                message.exercise_tag,
                message.created_at,
            ),
        )
        self._store.execute(
            "UPDATE sessions SET updated_at = ? WHERE id = ?",
            (utc_now(), session_id),
        )
        self._store.commit()
        return session_id

    def load_messages(self, session_id: str) -> list[Message]:
        rows = self._store.execute(
            """
            SELECT id, role, text, title, exercise_tag, created_at
            FROM messages
            WHERE session_id = ?
            ORDER BY seq ASC
            """,
            (session_id,),
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def get_last_messages(self, count: int) -> list[Message]:
        session_id = self.current_session_id()
        if session_id is None or count <= 0:
            return []
        rows = self._store.execute(
            """
            SELECT id, role, text, title, exercise_tag, created_at
            FROM messages
            WHERE session_id = ?
            ORDER BY seq DESC
            LIMIT ?
            """,
            (session_id, count),
        ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    def get_last_chat_messages(self, count: int) -> list[Message]:
        """Like ``get_last_messages`` but skips exercise and reflection messages."""
        session_id = self.current_session_id()
        if session_id is None or count <= 0:
            return []
        rows = self._store.execute(
            """
            SELECT id, role, text, title, exercise_tag, created_at
            FROM messages
            WHERE session_id = ? AND exercise_tag IS NULL
            ORDER BY seq DESC
            LIMIT ?
            """,
            (session_id, count),
        ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    def has_chat_reply(self) -> bool:
        """True once the current session holds any untagged assistant message."""
        session_id = self.current_session_id()
        if session_id is None:
            return False
        row = self._store.execute(
            """
            SELECT 1 FROM messages
            WHERE session_id = ? AND role = ? AND exercise_tag IS NULL
            LIMIT 1
            """,
            (session_id, ROLE_ASSISTANT),
        ).fetchone()
        return row is not None

    def recent_activity(self, *, limit: int = 10) -> list[dict]:
        """Newest lifecycle events first (session started, archived, exercise completed, ...)."""
        return self._events.list_events(limit=limit)

    def clear_current_session(self) -> str | None:
        """Detach the current session so the next message starts a fresh one. Returns its id."""
        session_id = self.current_session_id()
        if session_id is None:
            return None
        self._store.execute(
            "UPDATE sessions SET status = 'closed', updated_at = ? WHERE id = ?",
            (utc_now(), session_id),
        )
        self._store.commit()
        self._events.emit(session_id, "session.closed", {"session_id": session_id})
        return session_id

    def discard_session(self, session_id: str) -> bool:
        """Delete a closed, unsaved session and its messages. Active and archived sessions are kept."""
        cursor = self._store.execute(
            "DELETE FROM sessions WHERE id = ? AND status = 'closed'",
            (session_id,),
        )
        self._store.commit()
        return cursor.rowcount > 0

    def save_to_history(self, session_id: str) -> dict | None:
        """Archive a session with derived metadata. Sessions with no messages are skipped."""
        messages = self.load_messages(session_id)
        if not messages:
            return None

        user_messages = [m for m in messages if m.role == ROLE_USER]
        assistant_messages = [m for m in messages if m.role == ROLE_ASSISTANT]
        if user_messages:
            first = user_messages[0].text
            excerpt = first if len(first) <= _EXCERPT_CHARS else first[:_EXCERPT_CHARS] + "..."
        else:
            excerpt = "New session"

        metadata = {
            "message_count": len(messages),
            "user_message_count": len(user_messages),
            "assistant_message_count": len(assistant_messages),
            "duration": estimate_duration(len(user_messages)),
            "first_message": excerpt,
            "saved_at": utc_now(),
        }
        self._store.execute(
            "UPDATE sessions SET status = 'archived', metadata_json = ?, updated_at = ? WHERE id = ?",
            (json.dumps(metadata, ensure_ascii=True), utc_now(), session_id),
        )
        self._store.commit()
        self._events.emit(session_id, "session.archived", {"session_id": session_id, **metadata})
        logger.info(f"Session {session_id} archived ({len(messages)} messages)")
        return metadata

    def list_history(self, *, limit: int = 20) -> list[dict]:
        rows = self._store.execute(
            """
            SELECT id, created_at, updated_at, metadata_json
            FROM sessions
            WHERE status = 'archived'
            ORDER BY updated_at DESC, rowid DESC
            LIMIT ?
            """,
            (max(1, limit),),
        ).fetchall()
        return [
            {
                "id": row["id"],
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
                "metadata": self._parse_json(row["metadata_json"], {}),
            }
            for row in rows
        ]

    def get_rate_limit_record(self) -> RateLimitRecord:
        row = self._store.execute(
            "SELECT date_key, request_count, request_limit FROM rate_limits WHERE key = ?",
            (_RATE_LIMIT_KEY,),
        ).fetchone()
        if row is None:
            return RateLimitRecord(date_key=None, request_count=0, request_limit=0)
        return RateLimitRecord(
            date_key=row["date_key"],
            request_count=int(row["request_count"]),
            request_limit=int(row["request_limit"]),
        )

    def save_rate_limit_record(self, record: RateLimitRecord) -> None:
        self._store.execute(
            """
            INSERT INTO rate_limits (key, date_key, request_count, request_limit)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                date_key = excluded.date_key,
                request_count = excluded.request_count,
                request_limit = excluded.request_limit
            """,
            (_RATE_LIMIT_KEY, record.date_key, record.request_count, record.request_limit),
        )
        self._store.commit()

    def save_session_insights(self, session_id: str, patterns: list[ThoughtPattern]) -> None:
        """Replace the stored patterns for a session; re-running extraction never duplicates."""
        with self._store.transaction():
            self._store.execute("DELETE FROM thought_patterns WHERE session_id = ?", (session_id,))
            self._store.executemany(
                """
                INSERT INTO thought_patterns (
                    id, session_id, message_id, original_thought, distortion_types_json,
                    reframed_thought, confidence, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        p.id,
                        session_id,
                        p.message_id,
                        p.original_thought,
                        json.dumps(list(p.distortion_types), ensure_ascii=True),
                        p.reframed_thought,
                        p.confidence,
                        p.created_at,
                    )
                    for p in patterns
                ],
            )
        self._events.emit(session_id, "insights.saved", {"session_id": session_id, "count": len(patterns)})

    def get_session_insights(self, session_id: str) -> list[ThoughtPattern]:
        rows = self._store.execute(
            "SELECT * FROM thought_patterns WHERE session_id = ? ORDER BY created_at ASC, rowid ASC",
            (session_id,),
        ).fetchall()
        return [self._row_to_pattern(row) for row in rows]

    def get_thought_patterns(self, *, limit: int | None = None) -> list[ThoughtPattern]:
        query = "SELECT * FROM thought_patterns ORDER BY created_at DESC, rowid DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (max(1, limit),)
        rows = self._store.execute(query, params).fetchall()
        return [self._row_to_pattern(row) for row in rows]

    def save_reflection_summary(
        self,
        destination: str,
        *,
        payload: dict,
        artifact: SummaryArtifact,
        session_id: str | None,
    ) -> str:
        summary_id = str(uuid4())
        self._store.execute(
            """
            INSERT INTO reflection_summaries (
                id, destination, session_id, payload_json, summary, key_insights_json, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                summary_id,
                destination,
                session_id,
                json.dumps(payload, ensure_ascii=True),
                artifact.summary,
                json.dumps(list(artifact.key_insights), ensure_ascii=True),
                utc_now(),
            ),
        )
        self._store.commit()
        self._events.emit(session_id, "reflection.saved", {"destination": destination, "summary_id": summary_id})
        return summary_id

    def list_reflection_summaries(self, destination: str, *, limit: int = 20) -> list[dict]:
        rows = self._store.execute(
            """
            SELECT * FROM reflection_summaries
            WHERE destination = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (destination, max(1, limit)),
        ).fetchall()
        return [
            {
                "id": row["id"],
                "destination": row["destination"],
                "session_id": row["session_id"],
                "payload": self._parse_json(row["payload_json"], {}),
                "summary": row["summary"],
                "key_insights": self._parse_json(row["key_insights_json"], []),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def record_exercise_completion(
        self,
        *,
        category: str,
        flow_name: str,
        session_id: str | None,
        pre_mood: int | None,
        post_mood: int | None,
        duration_seconds: int,
        summary: SummaryArtifact | None,
    ) -> str:
        completion_id = str(uuid4())
        self._store.execute(
            """
            INSERT INTO exercise_completions (
                id, category, flow_name, session_id, pre_mood, post_mood,
                duration_seconds, summary_json, completed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                completion_id,
                category,
                flow_name,
                session_id,
                pre_mood,
                post_mood,
                max(0, duration_seconds),
                json.dumps(summary.to_dict(), ensure_ascii=True) if summary is not None else None,
                utc_now(),
            ),
        )
        self._store.commit()
        self._events.emit(
            session_id,
            "exercise.completed",
            {"category": category, "pre_mood": pre_mood, "post_mood": post_mood},
        )
        return completion_id

    def list_exercise_completions(self, *, limit: int = 20) -> list[dict]:
        rows = self._store.execute(
            "SELECT * FROM exercise_completions ORDER BY completed_at DESC, rowid DESC LIMIT ?",
            (max(1, limit),),
        ).fetchall()
        return [dict(row) for row in rows]

    def _row_to_message(self, row) -> Message:
        return Message(
            id=row["id"],
            role=row["role"],
            text=row["text"],
            created_at=row["created_at"],
            title=row["title"],
            exercise_tag=row["exercise_tag"],
        )

    def _row_to_pattern(self, row) -> ThoughtPattern:
        return ThoughtPattern(
            id=row["id"],
            session_id=row["session_id"],
            message_id=row["message_id"],
            original_thought=row["original_thought"],
            distortion_types=tuple(self._parse_json(row["distortion_types_json"], [])),
            reframed_thought=row["reframed_thought"],
            confidence=float(row["confidence"]),
            created_at=row["created_at"],
        )

    def _parse_json(self, raw: str | None, default):
        if not raw:
            return default
        try:
            return json.loads(raw)
        except Exception:
            return default

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class MemoryStore:
    def __init__(self, db_path: str):
        if db_path == ":memory:":
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
        else:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._initialize_schema()

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        return self._conn.executemany(query, seq_of_params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except Exception:
            self._conn.rollback()
            raise
        self._conn.commit()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN ('active', 'closed', 'archived')),
                metadata_json TEXT NOT NULL DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'notice', 'welcome')),
                text TEXT NOT NULL,
                title TEXT NULL,
                exercise_tag TEXT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(session_id, seq)
            );

            CREATE TABLE IF NOT EXISTS rate_limits (
                key TEXT PRIMARY KEY,
                date_key TEXT NULL,
                request_count INTEGER NOT NULL DEFAULT 0,
                request_limit INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS thought_patterns (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                message_id TEXT NULL,
                original_thought TEXT NOT NULL,
                distortion_types_json TEXT NOT NULL,
                reframed_thought TEXT NOT NULL,
                confidence REAL NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS reflection_summaries (
                id TEXT PRIMARY KEY,
                destination TEXT NOT NULL,
                session_id TEXT NULL,
                payload_json TEXT NOT NULL,
                summary TEXT NOT NULL,
                key_insights_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS exercise_completions (
                id TEXT PRIMARY KEY,
                category TEXT NOT NULL,
                flow_name TEXT NOT NULL,
                session_id TEXT NULL,
                pre_mood INTEGER NULL,
                post_mood INTEGER NULL,
                duration_seconds INTEGER NOT NULL DEFAULT 0,
                summary_json TEXT NULL,
                completed_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                session_id TEXT NULL,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_session_seq
                ON messages(session_id, seq);
            CREATE INDEX IF NOT EXISTS idx_sessions_status_updated
                ON sessions(status, updated_at);
            CREATE INDEX IF NOT EXISTS idx_thought_patterns_session
                ON thought_patterns(session_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_reflection_summaries_destination
                ON reflection_summaries(destination, created_at);
            CREATE INDEX IF NOT EXISTS idx_events_session_created
                ON events(session_id, created_at);
            """
        )
        self._conn.commit()

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, timedelta

from loguru import logger

from anu_companion.background import BackgroundTasks
from anu_companion.insight_extractors import InsightExtractor
from anu_companion.memory.session_store import SessionStore
from anu_companion.models import ROLE_USER, ThoughtPattern


class InsightScheduler:
    """Best-effort thought-pattern extraction at session end.

    ``extract_at_session_end`` never raises. A per-session in-flight set makes
    concurrent calls for the same session no-ops; the set is checked and
    claimed before the first await, so two calls racing on one event loop
    yield exactly one extraction request.
    """

    def __init__(
        self,
        store: SessionStore,
        extractor: InsightExtractor | None,
        background: BackgroundTasks,
        *,
        min_confidence: float = 0.6,
        min_user_messages: int = 2,
        min_message_chars: int = 20,
    ):
        self._store = store
        self._extractor = extractor
        self._background = background
        self._min_confidence = min_confidence
        self._min_user_messages = min_user_messages
        self._min_message_chars = min_message_chars
        self._in_flight: set[str] = set()

    @property
    def enabled(self) -> bool:
        return self._extractor is not None

    @property
    def pending(self) -> int:
        """Sessions whose extraction is running right now."""
        return len(self._in_flight)

    def schedule(self, session_id: str) -> None:
        if not self.enabled:
            return
        self._background.spawn(self.extract_at_session_end(session_id), name=f"insights:{session_id[:8]}")

    async def extract_at_session_end(self, session_id: str) -> list[ThoughtPattern]:
        if self._extractor is None or session_id in self._in_flight:
            return []
        self._in_flight.add(session_id)
        try:
            return await self._extract(session_id)
        except Exception as ex:
            logger.warning(f"Insight extraction failed for session {session_id}: {type(ex).__name__}: {ex}")
            return []
        finally:
            self._in_flight.discard(session_id)

    async def _extract(self, session_id: str) -> list[ThoughtPattern]:
        messages = self._store.load_messages(session_id)
        meaningful = [
            m for m in messages if m.role == ROLE_USER and len(m.text.strip()) > self._min_message_chars
        ]
        if len(meaningful) < self._min_user_messages:
            logger.info(
                f"Insight extraction skipped for session {session_id}: "
                f"{len(meaningful)} meaningful user message(s)"
            )
            return []

        logger.info(
            f"Extracting insights for session {session_id}: "
            f"{len(messages)} messages, {len(meaningful)} meaningful user messages"
        )
        result = await self._extractor.extract(messages, session_id)
        if not result.success:
            logger.warning(f"Insight extraction unsuccessful for session {session_id}: {result.error}")
            return []

        kept = [p for p in result.patterns if p.confidence >= self._min_confidence]
        if kept:
            self._store.save_session_insights(session_id, kept)
        logger.info(
            f"Insight extraction for session {session_id}: "
            f"{len(result.patterns)} returned, {len(kept)} kept"
        )
        return kept

    def insight_stats(self, *, now: datetime | None = None) -> dict:
        patterns = self._store.get_thought_patterns()
        if not patterns:
            return {
                "total_patterns": 0,
                "common_distortions": [],
                "recent_activity": 0,
                "confidence_average": 0.0,
            }

        now = now or datetime.now(UTC)
        week_ago = now - timedelta(days=7)
        distortions: Counter[str] = Counter()
        recent = 0
        for pattern in patterns:
            distortions.update(pattern.distortion_types)
            if datetime.fromisoformat(pattern.created_at) > week_ago:
                recent += 1

        return {
            "total_patterns": len(patterns),
            "common_distortions": [
                {"name": name, "count": count} for name, count in distortions.most_common(5)
            ],
            "recent_activity": recent,
            "confidence_average": sum(p.confidence for p in patterns) / len(patterns),
        }

import asyncio
from datetime import UTC, datetime, timedelta

from tests.memory.base import MemoryStoreTestCase
from anu_companion.background import BackgroundTasks
from anu_companion.insight_scheduler import InsightScheduler
from anu_companion.models import InsightExtractionResult, Message, ThoughtPattern


class _FakeExtractor:
    def __init__(self, result: InsightExtractionResult | Exception | None = None):
        self._result = result
        self.calls: list[str] = []

    async def extract(self, messages: list[Message], session_id: str) -> InsightExtractionResult:
        self.calls.append(session_id)
        await asyncio.sleep(0)
        if isinstance(self._result, Exception):
            raise self._result
        if self._result is not None:
            return self._result
        return InsightExtractionResult(
            success=True,
            patterns=[
                ThoughtPattern("I always ruin everything", ("overgeneralization",), "Sometimes things go wrong", 0.9, session_id),
                ThoughtPattern("Maybe they are annoyed", ("mind reading",), "I can ask them", 0.4, session_id),
            ],
        )


class InsightSchedulerTests(MemoryStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._background = BackgroundTasks()

    def _session(self, *user_texts: str) -> str:
        sid = None
        for text in user_texts:
            sid = self._sessions.append_message(Message.create("user", text))
            self._sessions.append_message(Message.create("assistant", "I hear you."))
        self._sessions.clear_current_session()
        return sid

    def _scheduler(self, extractor) -> InsightScheduler:
        return InsightScheduler(self._sessions, extractor, self._background)

    def test_low_confidence_patterns_are_filtered(self) -> None:
        sid = self._session("I always ruin everything I touch", "My friends must be annoyed with me")
        extractor = _FakeExtractor()

        kept = asyncio.run(self._scheduler(extractor).extract_at_session_end(sid))

        self.assertEqual(["I always ruin everything"], [p.original_thought for p in kept])
        stored = self._sessions.get_session_insights(sid)
        self.assertEqual(1, len(stored))

    def test_requires_two_meaningful_user_messages(self) -> None:
        sid = self._session("hi", "I always ruin everything I touch")
        extractor = _FakeExtractor()

        kept = asyncio.run(self._scheduler(extractor).extract_at_session_end(sid))

        self.assertEqual([], kept)
        self.assertEqual([], extractor.calls)

    def test_concurrent_calls_make_one_request(self) -> None:
        sid = self._session("I always ruin everything I touch", "My friends must be annoyed with me")
        extractor = _FakeExtractor()
        scheduler = self._scheduler(extractor)

        async def scenario():
            return await asyncio.gather(
                scheduler.extract_at_session_end(sid),
                scheduler.extract_at_session_end(sid),
            )

        first, second = asyncio.run(scenario())

        self.assertEqual([sid], extractor.calls)
        self.assertEqual(1, len(first) + len(second))
        self.assertEqual(0, scheduler.pending)

    def test_errors_are_swallowed(self) -> None:
        sid = self._session("I always ruin everything I touch", "My friends must be annoyed with me")
        scheduler = self._scheduler(_FakeExtractor(RuntimeError("endpoint down")))

        self.assertEqual([], asyncio.run(scheduler.extract_at_session_end(sid)))
        self.assertEqual(0, scheduler.pending)

    def test_unsuccessful_result_saves_nothing(self) -> None:
        sid = self._session("I always ruin everything I touch", "My friends must be annoyed with me")
        scheduler = self._scheduler(_FakeExtractor(InsightExtractionResult(success=False, error="nope")))

        self.assertEqual([], asyncio.run(scheduler.extract_at_session_end(sid)))
        self.assertEqual([], self._sessions.get_session_insights(sid))

    def test_disabled_scheduler_does_nothing(self) -> None:
        scheduler = self._scheduler(None)
        self.assertFalse(scheduler.enabled)
        self.assertEqual([], asyncio.run(scheduler.extract_at_session_end("missing")))

    def test_schedule_runs_in_background(self) -> None:
        sid = self._session("I always ruin everything I touch", "My friends must be annoyed with me")
        extractor = _FakeExtractor()
        scheduler = self._scheduler(extractor)

        async def scenario():
            scheduler.schedule(sid)
            self.assertEqual(1, self._background.pending)
            await self._background.drain()

        asyncio.run(scenario())

        self.assertEqual([sid], extractor.calls)
        self.assertEqual(1, len(self._sessions.get_session_insights(sid)))

    def test_insight_stats(self) -> None:
        now = datetime.now(UTC)
        old = (now - timedelta(days=30)).isoformat(timespec="seconds")
        self._sessions.save_session_insights(
            "s1",
            [
                ThoughtPattern("a", ("catastrophizing",), "a2", 0.8, "s1"),
                ThoughtPattern("b", ("catastrophizing", "labeling"), "b2", 0.6, "s1"),
                ThoughtPattern("c", ("labeling",), "c2", 1.0, "s1", created_at=old),
            ],
        )

        stats = self._scheduler(None).insight_stats(now=now)

        self.assertEqual(3, stats["total_patterns"])
        self.assertEqual(2, stats["recent_activity"])
        self.assertAlmostEqual(0.8, stats["confidence_average"])
        names = {d["name"]: d["count"] for d in stats["common_distortions"]}
        self.assertEqual({"catastrophizing": 2, "labeling": 2}, names)

    def test_insight_stats_empty(self) -> None:
        stats = self._scheduler(None).insight_stats()
        self.assertEqual(0, stats["total_patterns"])
        self.assertEqual([], stats["common_distortions"])

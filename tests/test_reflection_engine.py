import asyncio
import unittest

from tests.fakes import FakeClock, Gate, ScriptedProvider, reply
from tests.memory.base import MemoryStoreTestCase
from anu_companion.completion_client import CompletionClient
from anu_companion.models import ReflectionKind, ReflectionPhase
from anu_companion.rate_limiter import RateLimiter, TierQuotaSource
from anu_companion.reflection_engine import (
    CONTINUE_SUGGESTION,
    END_SUGGESTION,
    ReflectionEngine,
    is_end_request,
    offers_summary,
    with_summary_choices,
)

_SUMMARY = '{"summary": "Honesty guides how you show up.", "keyInsights": ["Honesty builds trust"]}'


class ReflectionHelperTests(unittest.TestCase):
    def test_end_request(self) -> None:
        self.assertTrue(is_end_request("Yes, end here and create a summary"))
        self.assertFalse(is_end_request("I want to keep going"))

    def test_offers_summary(self) -> None:
        self.assertTrue(offers_summary("Shall we wrap up and create a summary?"))
        self.assertFalse(offers_summary("What does honesty look like at work?"))

    def test_offer_wording_variants(self) -> None:
        self.assertTrue(offers_summary("Would you like to summarize what we've found?"))
        self.assertTrue(offers_summary("We could end here if that feels right."))
        self.assertTrue(offers_summary("Are you ready to wrap things up?"))

    def test_reflective_prose_is_not_an_offer(self) -> None:
        self.assertFalse(offers_summary("It sounds like your friend here really matters to you."))
        self.assertFalse(offers_summary("Let me summarize what I'm hearing: honesty feels safe."))
        self.assertFalse(offers_summary("Before we wrap up today's thought, what matters most?"))
        self.assertFalse(offers_summary("The weekend here was calm for you."))

    def test_summary_choices_lead_without_duplicates(self) -> None:
        result = with_summary_choices(["Sure", END_SUGGESTION])
        self.assertEqual([END_SUGGESTION, CONTINUE_SUGGESTION, "Sure"], result)


class ReflectionEngineTests(MemoryStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._provider = ScriptedProvider()
        self._clock = FakeClock()
        self._limiter = RateLimiter(self._sessions, TierQuotaSource({"free": 50}))
        self._engine = self._make_engine()

    def _make_engine(self, **kwargs) -> ReflectionEngine:
        return ReflectionEngine(
            self._sessions,
            CompletionClient(self._provider, "test-model"),
            self._limiter,
            clock=self._clock,
            **kwargs,
        )

    def _start_value(self) -> None:
        self._provider.queue(reply("What does honesty mean to you?", suggestions=["Being truthful"]))
        result = asyncio.run(self._engine.start(ReflectionKind.VALUE, {"value_name": "Honesty"}))
        self.assertTrue(result.ok)

    def _answer(self, text: str, response: str = "Tell me more.") -> None:
        self._provider.queue(reply(response))
        asyncio.run(self._engine.submit_response(text))

    def test_start_opens_reflection(self) -> None:
        self._start_value()

        self.assertEqual(ReflectionPhase.ACTIVE, self._engine.phase)
        self.assertFalse(self._engine.state.can_end)
        self.assertIn('"Honesty"', self._provider.calls[0]["system_prompt"])
        messages = self._sessions.get_last_messages(10)
        self.assertEqual(["user", "assistant"], [m.role for m in messages])
        self.assertTrue(all(m.exercise_tag == "reflection:value" for m in messages))

    def test_missing_required_fields(self) -> None:
        result = asyncio.run(
            self._engine.start(ReflectionKind.THINKING_PATTERN, {"original_thought": "I always fail"})
        )

        self.assertFalse(result.ok)
        self.assertIn("distortion_type", result.error)
        self.assertEqual([], self._provider.calls)

    def test_unknown_kind(self) -> None:
        result = asyncio.run(self._engine.start("dream", {}))
        self.assertFalse(result.ok)
        self.assertEqual(ReflectionPhase.IDLE, self._engine.phase)

    def test_can_end_after_three_answers(self) -> None:
        self._start_value()
        self._answer("Being truthful")
        self._answer("Even when it's hard")
        self.assertFalse(self._engine.refresh_can_end())

        self._answer("Especially with my family")

        self.assertTrue(self._engine.state.can_end)

    def test_can_end_after_elapsed_time_and_stays_open(self) -> None:
        self._start_value()
        self._clock.advance(121)
        self.assertTrue(self._engine.refresh_can_end())

        self._clock.now = 0.0

        self.assertTrue(self._engine.refresh_can_end())

    def test_turns_replay_full_transcript(self) -> None:
        self._start_value()
        self._answer("Being truthful")
        self._answer("Even when it's hard")

        sent = self._provider.calls[-1]["messages"]
        self.assertEqual(5, len(sent))
        self.assertEqual("Even when it's hard", sent[-1]["content"])

    def test_summary_offer_adds_end_choices(self) -> None:
        self._start_value()
        self._provider.queue(reply("Would you like to end here and create a summary?", suggestions=["Not yet"]))

        result = asyncio.run(self._engine.submit_response("I think I understand it now"))

        self.assertEqual([END_SUGGESTION, CONTINUE_SUGGESTION, "Not yet"], result.suggestions)

    def test_reflective_summary_keeps_model_suggestions(self) -> None:
        self._start_value()
        self._provider.queue(
            reply("Let me summarize what I'm hearing: honesty keeps you steady.", suggestions=["Yes, exactly"])
        )

        result = asyncio.run(self._engine.submit_response("I never lie to my friends"))

        self.assertEqual(["Yes, exactly"], result.suggestions)

    def test_end_phrase_summarizes_without_appending(self) -> None:
        self._start_value()
        before = len(self._sessions.get_last_messages(50))
        self._provider.queue(_SUMMARY)

        result = asyncio.run(self._engine.submit_response(END_SUGGESTION))

        self.assertTrue(result.ok)
        self.assertEqual(ReflectionPhase.SUMMARY, result.phase)
        self.assertEqual("Honesty guides how you show up.", result.summary.summary)
        self.assertEqual(before, len(self._sessions.get_last_messages(50)))

    def test_literal_end_phrase_on_second_turn(self) -> None:
        self._start_value()
        self._answer("Being truthful")
        self._provider.queue(_SUMMARY)

        result = asyncio.run(self._engine.submit_response("please create a summary now"))

        self.assertEqual(ReflectionPhase.SUMMARY, result.phase)
        self.assertEqual(1, self._engine.state.message_count)
        texts = [m.text for m in self._sessions.get_last_messages(50)]
        self.assertNotIn("please create a summary now", texts)

    def test_end_uses_summary_window(self) -> None:
        self._engine = self._make_engine(summary_window=2)
        self._start_value()
        self._answer("Being truthful", "And at work?")
        self._provider.queue(_SUMMARY)

        asyncio.run(self._engine.end())

        rendered = self._provider.calls[-1]["messages"][0]["content"]
        self.assertEqual("User: Being truthful\n\nAnu: And at work?", rendered)

    def test_cancel_returns_to_same_conversation(self) -> None:
        self._start_value()
        self._answer("Being truthful")
        self._provider.queue(_SUMMARY)
        asyncio.run(self._engine.end())
        transcript_length = len(self._engine.state.transcript)

        result = self._engine.cancel()

        self.assertTrue(result.ok)
        self.assertEqual(ReflectionPhase.ACTIVE, self._engine.phase)
        self.assertIsNone(self._engine.state.summary)
        self.assertEqual(transcript_length, len(self._engine.state.transcript))
        self.assertEqual(1, self._engine.state.message_count)

    def test_end_failure_aborts_reflection(self) -> None:
        self._start_value()
        self._provider.queue("no json here")

        result = asyncio.run(self._engine.end())

        self.assertFalse(result.ok)
        self.assertEqual(ReflectionPhase.IDLE, self._engine.phase)
        self.assertEqual([], self._sessions.list_reflection_summaries("value_reflections"))

    def test_save_persists_to_destination(self) -> None:
        self._start_value()
        self._provider.queue(_SUMMARY)
        asyncio.run(self._engine.end())

        result = self._engine.save()

        self.assertTrue(result.ok)
        self.assertEqual(ReflectionPhase.IDLE, self._engine.phase)
        saved = self._sessions.list_reflection_summaries("value_reflections")
        self.assertEqual(1, len(saved))
        self.assertEqual({"value_name": "Honesty"}, saved[0]["payload"])
        self.assertEqual(["Honesty builds trust"], saved[0]["key_insights"])

    def test_save_without_summary_fails(self) -> None:
        self._start_value()
        self.assertFalse(self._engine.save().ok)
        self.assertEqual(ReflectionPhase.ACTIVE, self._engine.phase)

    def test_turn_failure_stays_active(self) -> None:
        self._start_value()
        self._provider.queue(ConnectionError("down"))

        result = asyncio.run(self._engine.submit_response("Being truthful"))

        self.assertFalse(result.ok)
        self.assertEqual(ReflectionPhase.ACTIVE, self._engine.phase)
        self.assertEqual("reflection:value", result.messages[-1].exercise_tag)
        self.assertEqual(1, self._limiter.can_proceed().count)

    def test_opening_failure_returns_to_idle(self) -> None:
        self._provider.queue(ConnectionError("down"))

        result = asyncio.run(self._engine.start(ReflectionKind.VISION, {"title": "Calm home"}))

        self.assertFalse(result.ok)
        self.assertEqual(ReflectionPhase.IDLE, self._engine.phase)

    def test_quota_blocks_opening(self) -> None:
        self._limiter = RateLimiter(self._sessions, TierQuotaSource({"free": 0}))
        self._engine = self._make_engine()

        result = asyncio.run(self._engine.start(ReflectionKind.VALUE, {"value_name": "Honesty"}))

        self.assertFalse(result.ok)
        self.assertEqual("quota_exceeded", result.error)
        self.assertEqual([], self._provider.calls)
        self.assertEqual(ReflectionPhase.IDLE, self._engine.phase)

    def test_response_after_session_cleared_is_dropped(self) -> None:
        self._start_value()
        gate = Gate()
        self._provider.before_reply = gate.wait
        self._provider.queue(reply("late reply"))

        async def scenario():
            task = asyncio.create_task(self._engine.submit_response("Being truthful"))
            await gate.entered.wait()
            self._sessions.clear_current_session()
            gate.release()
            return await task

        result = asyncio.run(scenario())

        self.assertTrue(result.stale)
        self.assertEqual(ReflectionPhase.IDLE, self._engine.phase)
        self.assertEqual(1, self._limiter.can_proceed().count)


if __name__ == "__main__":
    unittest.main()

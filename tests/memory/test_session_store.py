from tests.memory.base import MemoryStoreTestCase
from anu_companion.memory.session_store import estimate_duration
from anu_companion.models import Message, RateLimitRecord, SummaryArtifact, ThoughtPattern


class SessionStoreTests(MemoryStoreTestCase):
    def test_first_append_creates_session_lazily(self) -> None:
        self.assertIsNone(self._sessions.current_session_id())

        sid = self._sessions.append_message(Message.create("welcome", "Hi there"))

        self.assertEqual(sid, self._sessions.current_session_id())
        started = self._events.list_events(event_type="session.started")
        self.assertEqual(1, len(started))

    def test_messages_keep_append_order(self) -> None:
        for i in range(5):
            self._sessions.append_message(Message.create("user" if i % 2 == 0 else "assistant", f"m{i}"))

        last = self._sessions.get_last_messages(3)
        self.assertEqual(["m2", "m3", "m4"], [m.text for m in last])
        session = self._sessions.get_current_session()
        self.assertEqual(5, len(session["messages"]))
        self.assertEqual("m0", session["messages"][0].text)

    def test_exercise_tag_and_title_round_trip(self) -> None:
        self._sessions.append_message(
            Message.create("assistant", "Breathe in", title="Step 1/3: Settle", exercise_tag="breathing")
        )

        message = self._sessions.get_last_messages(1)[0]
        self.assertEqual("Step 1/3: Settle", message.title)
        self.assertEqual("breathing", message.exercise_tag)

    def test_chat_messages_skip_tagged_ones(self) -> None:
        self.assertFalse(self._sessions.has_chat_reply())
        self._sessions.append_message(Message.create("user", "hi"))
        self._sessions.append_message(Message.create("assistant", "Breathe in", exercise_tag="breathing"))
        self.assertFalse(self._sessions.has_chat_reply())

        self._sessions.append_message(Message.create("assistant", "hello"))
        for i in range(4):
            self._sessions.append_message(Message.create("user", f"step {i}", exercise_tag="breathing"))

        self.assertTrue(self._sessions.has_chat_reply())
        self.assertEqual(["hi", "hello"], [m.text for m in self._sessions.get_last_chat_messages(3)])

    def test_clear_current_session_starts_fresh(self) -> None:
        first = self._sessions.append_message(Message.create("user", "hello"))

        cleared = self._sessions.clear_current_session()
        second = self._sessions.append_message(Message.create("user", "again"))

        self.assertEqual(first, cleared)
        self.assertNotEqual(first, second)
        self.assertEqual(["hello"], [m.text for m in self._sessions.load_messages(first)])
        self.assertEqual(["again"], [m.text for m in self._sessions.get_last_messages(10)])

    def test_clear_without_session_returns_none(self) -> None:
        self.assertIsNone(self._sessions.clear_current_session())

    def test_save_to_history_derives_metadata(self) -> None:
        long_text = "I have been feeling anxious about work for a couple of weeks now"
        self._sessions.append_message(Message.create("welcome", "Hi"))
        self._sessions.append_message(Message.create("user", long_text))
        self._sessions.append_message(Message.create("assistant", "That sounds hard."))
        self._sessions.append_message(Message.create("user", "yes"))
        sid = self._sessions.clear_current_session()

        metadata = self._sessions.save_to_history(sid)

        self.assertEqual(4, metadata["message_count"])
        self.assertEqual(2, metadata["user_message_count"])
        self.assertEqual(1, metadata["assistant_message_count"])
        self.assertEqual("4 min", metadata["duration"])
        self.assertEqual(long_text[:50] + "...", metadata["first_message"])
        history = self._sessions.list_history(limit=5)
        self.assertEqual(1, len(history))
        self.assertEqual(sid, history[0]["id"])
        self.assertEqual(4, history[0]["metadata"]["message_count"])

    def test_save_to_history_skips_empty_session(self) -> None:
        sid = self._sessions.create_session()
        self._sessions.clear_current_session()

        self.assertIsNone(self._sessions.save_to_history(sid))
        self.assertEqual([], self._sessions.list_history())

    def test_discard_only_removes_closed_sessions(self) -> None:
        sid = self._sessions.append_message(Message.create("user", "hello"))
        self.assertFalse(self._sessions.discard_session(sid))

        self._sessions.clear_current_session()
        self.assertTrue(self._sessions.discard_session(sid))
        self.assertIsNone(self._sessions.get_session(sid))
        self.assertEqual([], self._sessions.load_messages(sid))

    def test_rate_limit_record_upsert(self) -> None:
        default = self._sessions.get_rate_limit_record()
        self.assertIsNone(default.date_key)
        self.assertEqual(0, default.request_count)

        self._sessions.save_rate_limit_record(RateLimitRecord("2026-01-01", 3, 50))
        self._sessions.save_rate_limit_record(RateLimitRecord("2026-01-01", 4, 50))

        record = self._sessions.get_rate_limit_record()
        self.assertEqual("2026-01-01", record.date_key)
        self.assertEqual(4, record.request_count)
        self.assertEqual(50, record.request_limit)

    def test_save_session_insights_replaces_previous(self) -> None:
        sid = self._sessions.append_message(Message.create("user", "I always mess things up"))
        first = ThoughtPattern("I always fail", ("overgeneralization",), "Sometimes I fail", 0.9, sid)
        second = ThoughtPattern("Nobody likes me", ("mind reading",), "Some people do", 0.8, sid)

        self._sessions.save_session_insights(sid, [first])
        self._sessions.save_session_insights(sid, [second])

        stored = self._sessions.get_session_insights(sid)
        self.assertEqual(1, len(stored))
        self.assertEqual("Nobody likes me", stored[0].original_thought)
        self.assertEqual(("mind reading",), stored[0].distortion_types)
        self.assertEqual(1, len(self._sessions.get_session(sid)["thought_patterns"]))

    def test_reflection_summary_is_saved_by_destination(self) -> None:
        artifact = SummaryArtifact("You value honesty.", ("Honesty matters at work",))

        self._sessions.save_reflection_summary(
            "value_reflections",
            payload={"value_name": "Honesty"},
            artifact=artifact,
            session_id=None,
        )

        saved = self._sessions.list_reflection_summaries("value_reflections")
        self.assertEqual(1, len(saved))
        self.assertEqual("You value honesty.", saved[0]["summary"])
        self.assertEqual(["Honesty matters at work"], saved[0]["key_insights"])
        self.assertEqual({"value_name": "Honesty"}, saved[0]["payload"])
        self.assertEqual([], self._sessions.list_reflection_summaries("vision_reflections"))

    def test_record_exercise_completion(self) -> None:
        self._sessions.record_exercise_completion(
            category="gratitude",
            flow_name="Gratitude Practice",
            session_id=None,
            pre_mood=2,
            post_mood=4,
            duration_seconds=-5,
            summary=None,
        )

        completions = self._sessions.list_exercise_completions()
        self.assertEqual(1, len(completions))
        self.assertEqual("gratitude", completions[0]["category"])
        self.assertEqual(2, completions[0]["pre_mood"])
        self.assertEqual(4, completions[0]["post_mood"])
        self.assertEqual(0, completions[0]["duration_seconds"])
        self.assertIsNone(completions[0]["summary_json"])
        self.assertEqual(1, len(self._events.list_events(event_type="exercise.completed")))


class EstimateDurationTests(MemoryStoreTestCase):
    def test_durations(self) -> None:
        self.assertEqual("< 1 min", estimate_duration(0))
        self.assertEqual("2 min", estimate_duration(1))
        self.assertEqual("1h 10m", estimate_duration(35))

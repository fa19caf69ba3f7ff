from __future__ import annotations

import asyncio

from loguru import logger

from anu_companion.commands.router import CommandRouter
from anu_companion.companion_config import CompanionConfig
from anu_companion.exercise_catalog import EXERCISE_FLOWS
from anu_companion.models import (
    ExerciseFlowDefinition,
    ExercisePhase,
    ExerciseTurnResult,
    ReflectionKind,
    ReflectionPhase,
    ReflectionTurnResult,
)
from anu_companion.services.session_presenter import SessionPresenter

_REFLECTION_ALIASES = {
    "value": ReflectionKind.VALUE,
    "pattern": ReflectionKind.THINKING_PATTERN,
    "thinking-pattern": ReflectionKind.THINKING_PATTERN,
    "thinking_pattern": ReflectionKind.THINKING_PATTERN,
    "vision": ReflectionKind.VISION,
}

_HELP_LINES = (
    "Commands:",
    "  /exercise                      start the exercise Anu just offered",
    "  /exercise list                 list available exercises",
    "  /exercise start <type>         start an exercise (e.g. breathing, gratitude)",
    "  /exercise stop                 leave the current exercise",
    "  /mood <1-5|skip>               answer the before/after mood check",
    "  /reflect value <name> [| description]",
    "  /reflect pattern <thought> | <distortion> [| reframe]",
    "  /reflect vision <title> [| description]",
    "  /reflect stop                  leave the current reflection",
    "  /summary end|save|cancel       summarize, save or go back to the reflection",
    "  /quota [reset]                 today's message usage (reset clears today's count)",
    "  /plan [tier]                   show or change the subscription tier",
    "  /history [limit]               saved sessions",
    "  /insights                      thought-pattern statistics",
    "  /activity [limit]              recent session and exercise events",
    "  /end [nosave]                  end this session (saved to history by default)",
)


class Companion:
    """Routes terminal input to commands, the active exercise/reflection, or plain chat."""

    _LINE_PREFIX = "anu> "
    _USER_PROMPT = "you> "

    def __init__(self, config: CompanionConfig):
        self._store = config.store
        self._chat = config.chat
        self._exercises = config.exercises
        self._reflections = config.reflections
        self._rate_limiter = config.rate_limiter
        self._insights = config.insights
        self._background = config.background
        self._quota_source = config.quota_source
        self._pending_offer: ExerciseFlowDefinition | None = None
        self._run_lock = asyncio.Lock()
        self._presenter = SessionPresenter(line_prefix=self._LINE_PREFIX)

        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_exercise=self._handle_exercise_command,
            on_mood=self._handle_mood_command,
            on_reflect=self._handle_reflect_command,
            on_summary=self._handle_summary_command,
            on_quota=self._handle_quota_command,
            on_plan=self._handle_plan_command,
            on_history=self._handle_history_command,
            on_insights=self._handle_insights_command,
            on_activity=self._handle_activity_command,
            on_end=self._handle_end_command,
            on_unknown=self._on_unknown_command,
        )

    def begin(self) -> None:
        welcome = self._chat.begin()
        self._print_lines(self._presenter.format_message(welcome))

    async def run(self, user_message: str) -> None:
        async with self._run_lock:
            await self._run_inner(user_message)

    async def shutdown(self) -> None:
        await self._background.close()

    async def _run_inner(self, user_message: str) -> None:
        if await self._command_router.try_handle(user_message):
            return

        phase = self._exercises.phase
        if phase == ExercisePhase.ACTIVE:
            self._show_exercise(await self._exercises.submit_step_response(user_message))
            return
        if phase != ExercisePhase.IDLE:
            print(f"{self._LINE_PREFIX}Please answer the mood check first: /mood <1-5|skip>")
            return

        reflection_phase = self._reflections.phase
        if reflection_phase == ReflectionPhase.ACTIVE:
            self._show_reflection(await self._reflections.submit_response(user_message))
            return
        if reflection_phase == ReflectionPhase.SUMMARY:
            print(f"{self._LINE_PREFIX}Your reflection summary is waiting: /summary save or /summary cancel")
            return

        result = await self._chat.send_message(user_message)
        if result.stale:
            return
        self._print_lines(self._presenter.format_replies(result.messages))
        self._print_lines(self._presenter.format_suggestions(result.suggestions))
        if result.usage_warning:
            print(f"{self._LINE_PREFIX}{result.usage_warning}")
        if result.exercise_offer is not None:
            self._pending_offer = result.exercise_offer
            self._print_lines(self._presenter.format_exercise_card(result.exercise_offer))

    async def _on_help(self) -> None:
        for line in _HELP_LINES:
            print(f"{self._LINE_PREFIX}{line}")

    async def _handle_exercise_command(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        sub = parts[1].lower() if len(parts) > 1 else ""

        if sub == "list":
            for flow in EXERCISE_FLOWS.values():
                print(f"{self._LINE_PREFIX}  {flow.category}: {flow.name} ({flow.step_count} steps)")
            return
        if sub == "stop":
            self._exercises.abandon()
            print(f"{self._LINE_PREFIX}Exercise stopped. We can keep talking whenever you like.")
            return

        if sub == "start":
            if len(parts) < 3:
                print(f"{self._LINE_PREFIX}Usage: /exercise start <type>")
                return
            descriptor = parts[2]
        elif sub == "":
            if self._pending_offer is None:
                print(f"{self._LINE_PREFIX}No exercise has been offered yet. Try /exercise list.")
                return
            descriptor = self._pending_offer.category
        else:
            descriptor = command.split(maxsplit=1)[1]

        if self._reflections.is_running:
            print(f"{self._LINE_PREFIX}Finish or stop the current reflection first (/reflect stop).")
            return

        result = self._exercises.start(descriptor)
        if not result.ok:
            print(f"{self._LINE_PREFIX}{result.error}")
            return
        self._pending_offer = None
        flow = self._exercises.state.flow
        print(f"{self._LINE_PREFIX}{flow.name}: before we begin, how are you feeling? /mood <1-5|skip>")

    async def _handle_mood_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        raw = parts[1].strip().lower() if len(parts) > 1 else ""
        if raw == "skip":
            rating = None
        else:
            try:
                rating = int(raw)
            except ValueError:
                print(f"{self._LINE_PREFIX}Usage: /mood <1-5|skip>")
                return

        phase = self._exercises.phase
        if phase == ExercisePhase.PRE_MOOD_CAPTURE:
            self._show_exercise(await self._exercises.confirm_pre_mood(rating))
            return
        if phase == ExercisePhase.SUMMARY:
            self._exercises.dismiss_summary()
            phase = self._exercises.phase
        if phase == ExercisePhase.POST_MOOD_CAPTURE:
            result = self._exercises.confirm_post_mood(rating)
            if result.ok:
                print(f"{self._LINE_PREFIX}Thank you. Your practice has been recorded. 🌿")
            else:
                print(f"{self._LINE_PREFIX}{result.error}")
            return
        print(f"{self._LINE_PREFIX}There is no mood check right now.")

    async def _handle_reflect_command(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        if len(parts) < 2:
            print(f"{self._LINE_PREFIX}Usage: /reflect value|pattern|vision ... (see /help)")
            return
        sub = parts[1].lower()
        if sub == "stop":
            self._reflections.abandon()
            print(f"{self._LINE_PREFIX}Reflection stopped.")
            return
        kind = _REFLECTION_ALIASES.get(sub)
        if kind is None or len(parts) < 3:
            print(f"{self._LINE_PREFIX}Usage: /reflect value|pattern|vision ... (see /help)")
            return
        if self._exercises.is_running:
            print(f"{self._LINE_PREFIX}Finish or stop the current exercise first (/exercise stop).")
            return

        fields = [f.strip() for f in parts[2].split("|")]
        if kind == ReflectionKind.VALUE:
            payload = {"value_name": fields[0], "description": fields[1] if len(fields) > 1 else ""}
        elif kind == ReflectionKind.THINKING_PATTERN:
            payload = {
                "original_thought": fields[0],
                "distortion_type": fields[1] if len(fields) > 1 else "",
                "reframed_thought": fields[2] if len(fields) > 2 else "",
            }
        else:
            payload = {"title": fields[0], "description": fields[1] if len(fields) > 1 else ""}

        self._show_reflection(await self._reflections.start(kind, payload))

    async def _handle_summary_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        sub = parts[1].strip().lower() if len(parts) > 1 else "end"
        if sub == "end":
            if self._reflections.phase == ReflectionPhase.ACTIVE and not self._reflections.refresh_can_end():
                print(f"{self._LINE_PREFIX}Let's explore a little more before summarizing.")
                return
            self._show_reflection(await self._reflections.end())
        elif sub == "save":
            result = self._reflections.save()
            print(f"{self._LINE_PREFIX}{'Reflection saved. 🌱' if result.ok else result.error}")
        elif sub == "cancel":
            result = self._reflections.cancel()
            print(f"{self._LINE_PREFIX}{'Back to your reflection.' if result.ok else result.error}")
        else:
            print(f"{self._LINE_PREFIX}Usage: /summary end|save|cancel")

    async def _handle_quota_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        sub = parts[1].strip().lower() if len(parts) > 1 else ""
        if sub == "reset":
            self._rate_limiter.reset()
            logger.info("Daily message count reset from the terminal")
        elif sub:
            print(f"{self._LINE_PREFIX}Usage: /quota [reset]")
            return
        usage = self._rate_limiter.status()
        self._print_lines(
            self._presenter.format_usage(usage, time_until_reset=self._rate_limiter.time_until_reset())
        )

    async def _handle_plan_command(self, command: str) -> None:
        if self._quota_source is None:
            print(f"{self._LINE_PREFIX}Plans are not configured.")
            return
        parts = command.split(maxsplit=1)
        if len(parts) > 1:
            tier = parts[1].strip().lower()
            if tier not in self._quota_source.tiers:
                choices = ", ".join(self._quota_source.tiers)
                print(f"{self._LINE_PREFIX}Unknown plan: {tier} (choose from {choices})")
                return
            self._quota_source.set_tier(tier)
            logger.info(f"Subscription tier changed to {tier}")
        status = self._rate_limiter.can_proceed()
        print(
            f"{self._LINE_PREFIX}Plan: {self._quota_source.tier} "
            f"({status.limit} messages a day, {status.remaining} left today)"
        )

    async def _handle_history_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        limit = 10
        if len(parts) > 1:
            try:
                limit = max(1, int(parts[1]))
            except ValueError:
                print(f"{self._LINE_PREFIX}Usage: /history [limit]")
                return
        entries = self._store.list_history(limit=limit)
        if not entries:
            print(f"{self._LINE_PREFIX}No saved sessions yet.")
            return
        for entry in entries:
            print(self._presenter.format_history_entry(entry))

    async def _handle_insights_command(self) -> None:
        self._print_lines(self._presenter.format_insight_stats(self._insights.insight_stats()))
        if self._insights.pending:
            print(f"{self._LINE_PREFIX}Still looking for patterns in {self._insights.pending} recent session(s).")

    async def _handle_activity_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        limit = 10
        if len(parts) > 1:
            try:
                limit = max(1, int(parts[1]))
            except ValueError:
                print(f"{self._LINE_PREFIX}Usage: /activity [limit]")
                return
        for event in self._store.recent_activity(limit=limit):
            print(self._presenter.format_activity_entry(event))

    async def _handle_end_command(self, command: str) -> None:
        save = "nosave" not in command.lower()
        self._exercises.abandon()
        self._reflections.abandon()
        self._pending_offer = None
        session_id = self._chat.end_session(save=save)
        if session_id is None:
            print(f"{self._LINE_PREFIX}There is no session to end.")
        else:
            logger.info(f"Session {session_id} ended by user")
            print(f"{self._LINE_PREFIX}Take care. I'm here whenever you want to talk again. 🐢")
        self.begin()

    def _on_unknown_command(self, command: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown command: {command} (try /help)")

    def _show_exercise(self, result: ExerciseTurnResult) -> None:
        if result.stale:
            return
        self._print_lines(self._presenter.format_replies(result.messages))
        if result.summary is not None:
            self._print_lines(self._presenter.format_summary(result.summary, heading="Your exercise recap"))
        self._print_lines(self._presenter.format_suggestions(result.suggestions))
        if not result.ok and result.error and not result.messages:
            print(f"{self._LINE_PREFIX}{result.error}")
        if result.phase in (ExercisePhase.SUMMARY, ExercisePhase.POST_MOOD_CAPTURE):
            print(f"{self._LINE_PREFIX}How are you feeling now? /mood <1-5|skip>")

    def _show_reflection(self, result: ReflectionTurnResult) -> None:
        if result.stale:
            return
        self._print_lines(self._presenter.format_replies(result.messages))
        if result.summary is not None:
            self._print_lines(self._presenter.format_summary(result.summary))
            print(f"{self._LINE_PREFIX}/summary save to keep it, /summary cancel to keep talking.")
        elif not result.ok and result.error and not result.messages:
            print(f"{self._LINE_PREFIX}{result.error}")
        self._print_lines(self._presenter.format_suggestions(result.suggestions))
        if result.phase == ReflectionPhase.ACTIVE and result.can_end:
            print(f"{self._LINE_PREFIX}(You can end and summarize anytime: /summary end)")

    def _print_lines(self, lines: list[str]) -> None:
        for line in lines:
            print(line)

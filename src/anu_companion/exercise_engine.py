from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger

from anu_companion.completion_client import CompletionClient, fallback_message
from anu_companion.context_assembler import ContextAssembler
from anu_companion.errors import MissingFlowDefinition, QuotaExceeded, SummarizationFailure
from anu_companion.exercise_catalog import get_exercise_flow
from anu_companion.insight_scheduler import InsightScheduler
from anu_companion.memory.session_store import SessionStore
from anu_companion.models import (
    ROLE_ASSISTANT,
    ROLE_NOTICE,
    ROLE_USER,
    ExerciseFlowDefinition,
    ExercisePhase,
    ExerciseRuntimeState,
    ExerciseTurnResult,
    Message,
    SummaryArtifact,
)
from anu_companion.prompts import EXERCISE_KICKOFF_TEMPLATE
from anu_companion.rate_limiter import RateLimiter

COMPLETION_TITLE = "🎉 Exercise Complete!"
MOOD_MIN = 1
MOOD_MAX = 5

_HISTORY_FETCH = 20


def step_title(flow: ExerciseFlowDefinition, step_index: int) -> str:
    return f"Step {step_index + 1}/{flow.step_count}: {flow.steps[step_index].title}"


class ExerciseFlowEngine:
    """State machine for one guided exercise at a time.

    Idle -> PreMoodCapture -> Active(step) -> ... -> [Summary] -> PostMoodCapture -> Idle.

    The completion service decides when a step is done via its advance signal;
    the engine only clamps the step index and never forces an advance. Any
    completion failure while active exits to Idle without moving the step.
    Public methods return an ``ExerciseTurnResult`` and never raise.
    """

    def __init__(
        self,
        store: SessionStore,
        assembler: ContextAssembler,
        client: CompletionClient,
        rate_limiter: RateLimiter,
        insights: InsightScheduler | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._assembler = assembler
        self._client = client
        self._rate_limiter = rate_limiter
        self._insights = insights
        self._clock = clock
        self._phase = ExercisePhase.IDLE
        self._state: ExerciseRuntimeState | None = None

    @property
    def phase(self) -> ExercisePhase:
        return self._phase

    @property
    def state(self) -> ExerciseRuntimeState | None:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._phase != ExercisePhase.IDLE

    def start(self, descriptor: str) -> ExerciseTurnResult:
        if self.is_running:
            return self._result(False, error="An exercise is already in progress")
        flow = get_exercise_flow(descriptor)
        if flow is None:
            error = MissingFlowDefinition(descriptor)
            logger.warning(f"Exercise start failed: {error}")
            return self._result(False, error=str(error))

        self._state = ExerciseRuntimeState(flow=flow, started_at=self._clock())
        self._phase = ExercisePhase.PRE_MOOD_CAPTURE
        logger.info(f"Exercise {flow.category} started ({flow.step_count} steps), awaiting pre-mood")
        return self._result(True)

    async def confirm_pre_mood(self, rating: int | None) -> ExerciseTurnResult:
        if self._phase != ExercisePhase.PRE_MOOD_CAPTURE or self._state is None:
            return self._result(False, error="No exercise is waiting for a mood rating")
        if rating is not None and not MOOD_MIN <= rating <= MOOD_MAX:
            return self._result(False, error=f"Mood rating must be between {MOOD_MIN} and {MOOD_MAX}")
        try:
            return await self._kickoff(self._state, rating)
        except Exception as ex:
            logger.error(f"Exercise kickoff crashed: {type(ex).__name__}: {ex}")
            self._reset()
            return self._result(False, error=str(ex))

    async def submit_step_response(self, user_text: str) -> ExerciseTurnResult:
        if self._phase != ExercisePhase.ACTIVE or self._state is None:
            return self._result(False, error="No exercise step is active")
        if not user_text.strip():
            return self._result(False, error="Empty response")
        try:
            return await self._step_turn(self._state, user_text.strip())
        except Exception as ex:
            logger.error(f"Exercise turn crashed: {type(ex).__name__}: {ex}")
            self._reset()
            return self._result(False, error=str(ex))

    def dismiss_summary(self) -> ExerciseTurnResult:
        if self._phase != ExercisePhase.SUMMARY:
            return self._result(False, error="No exercise summary is showing")
        self._phase = ExercisePhase.POST_MOOD_CAPTURE
        return self._result(True)

    def confirm_post_mood(self, rating: int | None) -> ExerciseTurnResult:
        """Dismiss the post-mood gate (``rating=None`` skips it) and record the completion."""
        if self._phase != ExercisePhase.POST_MOOD_CAPTURE or self._state is None:
            return self._result(False, error="No exercise is waiting for a mood rating")
        if rating is not None and not MOOD_MIN <= rating <= MOOD_MAX:
            return self._result(False, error=f"Mood rating must be between {MOOD_MIN} and {MOOD_MAX}")

        state = self._state
        summary = state.summary
        try:
            self._store.record_exercise_completion(
                category=state.flow.category,
                flow_name=state.flow.name,
                session_id=state.session_id,
                pre_mood=state.pre_mood,
                post_mood=rating,
                duration_seconds=int(self._clock() - state.started_at),
                summary=summary,
            )
        except Exception as ex:
            logger.warning(f"Failed to record exercise completion: {ex}")
        logger.info(f"Exercise {state.flow.category} finished: mood {state.pre_mood} -> {rating}")
        self._reset()
        return self._result(True, summary=summary)

    def abandon(self) -> ExerciseTurnResult:
        if self._state is not None:
            logger.info(f"Exercise {self._state.flow.category} abandoned in phase {self._phase}")
        self._reset()
        return self._result(True)

    async def _kickoff(self, state: ExerciseRuntimeState, rating: int | None) -> ExerciseTurnResult:
        flow = state.flow
        quota = self._rate_limiter.can_proceed()
        if quota.limit_reached:
            notice = self._append(ROLE_NOTICE, self._rate_limiter.limit_message(quota))
            logger.info(f"Exercise kickoff blocked: {QuotaExceeded(quota.limit)}")
            return self._result(False, messages=[notice], error="quota_exceeded")

        state.pre_mood = rating
        kickoff = self._append(ROLE_USER, EXERCISE_KICKOFF_TEMPLATE.format(flow_name=flow.name), tag=flow.category)
        state.session_id = self._store.current_session_id()
        state.step_index = 0
        state.step_message_counts = {0: 1}
        self._phase = ExercisePhase.ACTIVE

        context = self._assembler.assemble_exercise_step_context(
            self._store.get_last_messages(_HISTORY_FETCH),
            flow,
            0,
            True,
            step_message_count=0,
        )
        result = await self._client.complete(context)
        if self._is_stale(state):
            return self._stale(state)

        if not result.success:
            logger.warning(f"Exercise {flow.category} kickoff failed ({result.error_kind}), back to idle")
            self._reset()
            fallback = self._append(ROLE_ASSISTANT, fallback_message(kickoff.text))
            return self._result(False, messages=[kickoff, fallback], error=result.error)

        self._rate_limiter.record_success()
        reply = self._append(ROLE_ASSISTANT, result.message, title=step_title(flow, 0), tag=flow.category)
        logger.info(f"Exercise {flow.category} active at step 1/{flow.step_count}")
        return self._result(True, messages=[kickoff, reply], suggestions=result.suggestions)

    async def _step_turn(self, state: ExerciseRuntimeState, user_text: str) -> ExerciseTurnResult:
        flow = state.flow
        step_index = min(state.step_index, flow.step_count - 1)
        user_message = self._append(ROLE_USER, user_text, tag=flow.category)

        quota = self._rate_limiter.can_proceed()
        if quota.limit_reached:
            notice = self._append(ROLE_NOTICE, self._rate_limiter.limit_message(quota))
            logger.info(f"Exercise turn blocked: {QuotaExceeded(quota.limit)}")
            return self._result(False, messages=[user_message, notice], error="quota_exceeded")

        previous = state.count_for(step_index)
        state.step_message_counts[step_index] = previous + 1
        context = self._assembler.assemble_exercise_step_context(
            self._store.get_last_messages(_HISTORY_FETCH),
            flow,
            step_index,
            previous == 0,
            step_message_count=previous,
        )
        result = await self._client.complete(context)
        if self._is_stale(state):
            return self._stale(state)

        if not result.success:
            logger.warning(
                f"Exercise {flow.category} step {step_index + 1} failed ({result.error_kind}), back to idle"
            )
            self._reset()
            fallback = self._append(ROLE_ASSISTANT, fallback_message(user_text))
            return self._result(False, messages=[user_message, fallback], error=result.error)

        self._rate_limiter.record_success()
        messages = [user_message]

        if not result.advance:
            messages.append(
                self._append(ROLE_ASSISTANT, result.message, title=step_title(flow, step_index), tag=flow.category)
            )
            logger.info(
                f"Exercise {flow.category} stays at step {step_index + 1} "
                f"(count={state.count_for(step_index)})"
            )
            return self._result(True, messages=messages, suggestions=result.suggestions)

        if step_index < flow.step_count - 1:
            next_index = step_index + 1
            state.step_index = next_index
            state.step_message_counts[next_index] = 0
            messages.append(
                self._append(ROLE_ASSISTANT, result.message, title=step_title(flow, next_index), tag=flow.category)
            )
            logger.info(f"Exercise {flow.category} advanced to step {next_index + 1}/{flow.step_count}")
            return self._result(True, messages=messages, suggestions=result.suggestions)

        messages.append(
            self._append(ROLE_ASSISTANT, result.message, title=step_title(flow, step_index), tag=flow.category)
        )
        return await self._complete_flow(state, messages)

    async def _complete_flow(self, state: ExerciseRuntimeState, messages: list[Message]) -> ExerciseTurnResult:
        flow = state.flow
        messages.append(
            self._append(
                ROLE_NOTICE,
                f"**Excellent work completing the {flow.name} exercise!** 🌟\n\n"
                "Your insights will be available in your insights view. "
                "Great job practicing this therapeutic skill! 💪",
                title=COMPLETION_TITLE,
                tag=flow.category,
            )
        )
        logger.info(f"Exercise {flow.category} completed all {flow.step_count} steps")

        if self._insights is not None and state.session_id is not None:
            self._insights.schedule(state.session_id)

        if not flow.requires_recap:
            self._phase = ExercisePhase.POST_MOOD_CAPTURE
            return self._result(True, messages=messages)

        self._phase = ExercisePhase.SUMMARY
        context = self._assembler.assemble_exercise_recap_context(
            self._store.load_messages(state.session_id) if state.session_id else [],
            flow,
        )
        try:
            summary = await self._client.complete_summary(context)
        except SummarizationFailure as ex:
            if self._is_stale(state):
                return self._stale(state)
            logger.warning(f"Exercise {flow.category} recap failed, skipping to mood capture: {ex}")
            self._phase = ExercisePhase.POST_MOOD_CAPTURE
            return self._result(True, messages=messages)

        if self._is_stale(state):
            return self._stale(state)
        state.summary = summary
        return self._result(True, messages=messages, summary=summary)

    def _append(
        self,
        role: str,
        text: str,
        *,
        title: str | None = None,
        tag: str | None = None,
    ) -> Message:
        message = Message.create(role, text, title=title, exercise_tag=tag)
        self._store.append_message(message)
        return message

    def _is_stale(self, state: ExerciseRuntimeState) -> bool:
        """True when the exercise or its session went away while a completion was in flight."""
        if self._state is not state:
            return True
        return state.session_id is not None and self._store.current_session_id() != state.session_id

    def _stale(self, state: ExerciseRuntimeState) -> ExerciseTurnResult:
        logger.info("Dropping stale exercise completion: session was cleared or replaced")
        if self._state is state:
            self._reset()
        return ExerciseTurnResult(ok=False, phase=self._phase, step_index=self._step_index(), stale=True)

    def _reset(self) -> None:
        self._phase = ExercisePhase.IDLE
        self._state = None

    def _step_index(self) -> int | None:
        if self._state is None or self._phase != ExercisePhase.ACTIVE:
            return None
        return min(self._state.step_index, self._state.flow.step_count - 1)

    def _result(
        self,
        ok: bool,
        *,
        messages: list[Message] | None = None,
        suggestions: list[str] | None = None,
        summary: SummaryArtifact | None = None,
        error: str | None = None,
    ) -> ExerciseTurnResult:
        return ExerciseTurnResult(
            ok=ok,
            phase=self._phase,
            step_index=self._step_index(),
            messages=messages or [],
            suggestions=suggestions or [],
            summary=summary,
            error=error,
        )

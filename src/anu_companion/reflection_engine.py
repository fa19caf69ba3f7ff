from __future__ import annotations

import re
import time
from collections.abc import Callable

from loguru import logger

from anu_companion.completion_client import CompletionClient, fallback_message
from anu_companion.errors import QuotaExceeded, SummarizationFailure
from anu_companion.memory.session_store import SessionStore
from anu_companion.models import (
    ROLE_ASSISTANT,
    ROLE_NOTICE,
    ROLE_USER,
    Message,
    ReflectionKind,
    ReflectionPhase,
    ReflectionRuntimeState,
    ReflectionTurnResult,
    SummaryArtifact,
)
from anu_companion.rate_limiter import RateLimiter
from anu_companion.reflection_kinds import REFLECTION_KINDS, ReflectionKindDescriptor

END_PHRASES = (
    "end here and create a summary",
    "finish the reflection",
    "create a summary now",
)

END_SUGGESTION = "Yes, end here and create a summary"
CONTINUE_SUGGESTION = "Let's keep exploring"

_SUMMARY_OFFER_PATTERNS = (
    re.compile(r"\bcreate (?:a|your) summary\b"),
    re.compile(r"\bend here\b"),
    re.compile(
        r"\b(?:would you like|do you want|shall we|should we|are you ready|ready)\b[^.?!]*"
        r"\b(?:summari[sz]e|wrap (?:it |things )?up|end (?:here|the reflection|our reflection))\b"
    ),
)


def is_end_request(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in END_PHRASES)


def offers_summary(text: str) -> bool:
    lowered = text.lower()
    return any(pattern.search(lowered) for pattern in _SUMMARY_OFFER_PATTERNS)


def with_summary_choices(suggestions: list[str]) -> list[str]:
    rest = [s for s in suggestions if s not in (END_SUGGESTION, CONTINUE_SUGGESTION)]
    return [END_SUGGESTION, CONTINUE_SUGGESTION, *rest]


class ReflectionEngine:
    """One open-ended reflection at a time, parameterized by a kind descriptor.

    Idle -> Active -> Summary -> (save) Idle, with ``cancel`` going from
    Summary back to Active without touching the conversation so far.
    ``can_end`` flips to True once the user has answered ``min_messages``
    times or ``min_seconds`` have elapsed, and stays True for the rest of
    the reflection.
    """

    def __init__(
        self,
        store: SessionStore,
        client: CompletionClient,
        rate_limiter: RateLimiter,
        *,
        kinds: dict[ReflectionKind, ReflectionKindDescriptor] | None = None,
        summary_window: int = 15,
        min_messages: int = 3,
        min_seconds: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._client = client
        self._rate_limiter = rate_limiter
        self._kinds = kinds if kinds is not None else REFLECTION_KINDS
        self._summary_window = max(1, summary_window)
        self._min_messages = min_messages
        self._min_seconds = min_seconds
        self._clock = clock
        self._phase = ReflectionPhase.IDLE
        self._state: ReflectionRuntimeState | None = None

    @property
    def phase(self) -> ReflectionPhase:
        return self._phase

    @property
    def state(self) -> ReflectionRuntimeState | None:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._phase != ReflectionPhase.IDLE

    def refresh_can_end(self) -> bool:
        """Re-evaluate the eligibility gate (elapsed time can open it between turns)."""
        if self._state is None:
            return False
        state = self._state
        if not state.can_end:
            elapsed = self._clock() - state.started_at
            state.can_end = state.message_count >= self._min_messages or elapsed >= self._min_seconds
            if state.can_end:
                logger.info(f"Reflection {state.kind} can now end (messages={state.message_count})")
        return state.can_end

    async def start(self, kind: ReflectionKind | str, payload: dict) -> ReflectionTurnResult:
        if self.is_running:
            return self._result(False, error="A reflection is already in progress")
        try:
            descriptor = self._kinds[ReflectionKind(kind)]
        except (KeyError, ValueError):
            return self._result(False, error=f"Unknown reflection kind: {kind!r}")
        missing = descriptor.missing_fields(payload)
        if missing:
            return self._result(False, error=f"Missing reflection fields: {', '.join(missing)}")
        try:
            return await self._open(descriptor, dict(payload))
        except Exception as ex:
            logger.error(f"Reflection start crashed: {type(ex).__name__}: {ex}")
            self._reset()
            return self._result(False, error=str(ex))

    async def submit_response(self, user_text: str) -> ReflectionTurnResult:
        if self._phase != ReflectionPhase.ACTIVE or self._state is None:
            return self._result(False, error="No reflection is active")
        text = user_text.strip()
        if not text:
            return self._result(False, error="Empty response")
        if is_end_request(text):
            logger.info("Reflection end phrase received, summarizing")
            return await self.end()
        try:
            return await self._turn(self._state, text)
        except Exception as ex:
            logger.error(f"Reflection turn crashed: {type(ex).__name__}: {ex}")
            self._reset()
            return self._result(False, error=str(ex))

    async def end(self) -> ReflectionTurnResult:
        if self._phase == ReflectionPhase.SUMMARY and self._state is not None:
            return self._result(True, summary=self._state.summary)
        if self._phase != ReflectionPhase.ACTIVE or self._state is None:
            return self._result(False, error="No reflection is active")

        state = self._state
        descriptor = self._kinds[state.kind]
        session_id = self._store.current_session_id()
        context = descriptor.end_context(state.payload, state.transcript, self._summary_window)
        try:
            summary = await self._client.complete_summary(context)
        except SummarizationFailure as ex:
            if self._is_stale(state, session_id):
                return self._stale(state)
            logger.warning(f"Reflection {state.kind} summary failed, aborting: {ex}")
            self._reset()
            return self._result(False, error=str(ex))
        except Exception as ex:
            logger.error(f"Reflection summary crashed: {type(ex).__name__}: {ex}")
            self._reset()
            return self._result(False, error=str(ex))

        if self._is_stale(state, session_id):
            return self._stale(state)
        state.summary = summary
        self._phase = ReflectionPhase.SUMMARY
        logger.info(f"Reflection {state.kind} summarized ({len(summary.key_insights)} insights)")
        return self._result(True, summary=summary)

    def cancel(self) -> ReflectionTurnResult:
        """Close the summary view and return to the same in-progress reflection."""
        if self._phase != ReflectionPhase.SUMMARY or self._state is None:
            return self._result(False, error="No reflection summary is showing")
        self._state.summary = None
        self._phase = ReflectionPhase.ACTIVE
        return self._result(True)

    def save(self) -> ReflectionTurnResult:
        if self._phase != ReflectionPhase.SUMMARY or self._state is None or self._state.summary is None:
            return self._result(False, error="No reflection summary to save")
        state = self._state
        descriptor = self._kinds[state.kind]
        try:
            self._store.save_reflection_summary(
                descriptor.destination,
                payload=state.payload,
                artifact=state.summary,
                session_id=state.session_id,
            )
        except Exception as ex:
            logger.error(f"Failed to save reflection to {descriptor.destination}: {ex}")
            return self._result(False, summary=state.summary, error=str(ex))

        summary = state.summary
        logger.info(f"Reflection {state.kind} saved to {descriptor.destination}")
        self._reset()
        return self._result(True, summary=summary)

    def abandon(self) -> ReflectionTurnResult:
        if self._state is not None:
            logger.info(f"Reflection {self._state.kind} abandoned in phase {self._phase}")
        self._reset()
        return self._result(True)

    async def _open(self, descriptor: ReflectionKindDescriptor, payload: dict) -> ReflectionTurnResult:
        quota = self._rate_limiter.can_proceed()
        if quota.limit_reached:
            notice = self._append(ROLE_NOTICE, self._rate_limiter.limit_message(quota))
            logger.info(f"Reflection start blocked: {QuotaExceeded(quota.limit)}")
            return self._result(False, messages=[notice], error="quota_exceeded")

        kickoff_text = descriptor.kickoff_text(payload)
        kickoff = self._append(ROLE_USER, kickoff_text, tag=descriptor.tag)
        state = ReflectionRuntimeState(
            kind=descriptor.kind,
            payload=payload,
            session_id=self._store.current_session_id(),
            message_count=0,
            started_at=self._clock(),
            transcript=[{"role": ROLE_USER, "content": kickoff_text}],
        )
        self._state = state
        self._phase = ReflectionPhase.ACTIVE
        logger.info(f"Reflection {descriptor.kind} started")

        result = await self._client.complete(descriptor.turn_context(payload, state.transcript))
        if self._is_stale(state, state.session_id):
            return self._stale(state)

        if not result.success:
            logger.warning(f"Reflection {descriptor.kind} opening failed ({result.error_kind}), back to idle")
            self._reset()
            fallback = self._append(ROLE_ASSISTANT, fallback_message(kickoff_text))
            return self._result(False, messages=[kickoff, fallback], error=result.error)

        self._rate_limiter.record_success()
        reply = self._append(ROLE_ASSISTANT, result.message, tag=descriptor.tag)
        state.transcript.append({"role": ROLE_ASSISTANT, "content": result.message})
        return self._result(True, messages=[kickoff, reply], suggestions=result.suggestions)

    async def _turn(self, state: ReflectionRuntimeState, text: str) -> ReflectionTurnResult:
        descriptor = self._kinds[state.kind]
        user_message = self._append(ROLE_USER, text, tag=descriptor.tag)
        state.transcript.append({"role": ROLE_USER, "content": text})

        quota = self._rate_limiter.can_proceed()
        if quota.limit_reached:
            notice = self._append(ROLE_NOTICE, self._rate_limiter.limit_message(quota))
            logger.info(f"Reflection turn blocked: {QuotaExceeded(quota.limit)}")
            return self._result(False, messages=[user_message, notice], error="quota_exceeded")

        state.message_count += 1
        self.refresh_can_end()

        session_id = self._store.current_session_id()
        result = await self._client.complete(descriptor.turn_context(state.payload, state.transcript))
        if self._is_stale(state, session_id):
            return self._stale(state)

        if not result.success:
            logger.warning(f"Reflection {state.kind} turn failed ({result.error_kind}), staying active")
            fallback = self._append(ROLE_ASSISTANT, fallback_message(text), tag=descriptor.tag)
            return self._result(False, messages=[user_message, fallback], error=result.error)

        self._rate_limiter.record_success()
        reply = self._append(ROLE_ASSISTANT, result.message, tag=descriptor.tag)
        state.transcript.append({"role": ROLE_ASSISTANT, "content": result.message})
        suggestions = result.suggestions
        if offers_summary(result.message):
            suggestions = with_summary_choices(suggestions)
        logger.debug(f"Reflection {state.kind} turn {state.message_count}, can_end={state.can_end}")
        return self._result(True, messages=[user_message, reply], suggestions=suggestions)

    def _append(self, role: str, text: str, *, tag: str | None = None) -> Message:
        message = Message.create(role, text, exercise_tag=tag)
        self._store.append_message(message)
        return message

    def _is_stale(self, state: ReflectionRuntimeState, session_id: str | None) -> bool:
        if self._state is not state:
            return True
        return session_id is not None and self._store.current_session_id() != session_id

    def _stale(self, state: ReflectionRuntimeState) -> ReflectionTurnResult:
        logger.info("Dropping stale reflection completion: session was cleared or replaced")
        if self._state is state:
            self._reset()
        return ReflectionTurnResult(
            ok=False,
            phase=self._phase,
            can_end=self._state.can_end if self._state else False,
            stale=True,
        )

    def _reset(self) -> None:
        self._phase = ReflectionPhase.IDLE
        self._state = None

    def _result(
        self,
        ok: bool,
        *,
        messages: list[Message] | None = None,
        suggestions: list[str] | None = None,
        summary: SummaryArtifact | None = None,
        error: str | None = None,
    ) -> ReflectionTurnResult:
        return ReflectionTurnResult(
            ok=ok,
            phase=self._phase,
            can_end=self._state.can_end if self._state else False,
            messages=messages or [],
            suggestions=suggestions or [],
            summary=summary,
            error=error,
        )

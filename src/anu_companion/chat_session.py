from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from anu_companion.background import BackgroundTasks
from anu_companion.completion_client import CompletionClient, fallback_message
from anu_companion.context_assembler import ContextAssembler
from anu_companion.exercise_detection import detect_exercise_confirmation, structured_exercise_offer
from anu_companion.insight_scheduler import InsightScheduler
from anu_companion.memory.session_store import SessionStore
from anu_companion.models import (
    ROLE_ASSISTANT,
    ROLE_NOTICE,
    ROLE_USER,
    ROLE_WELCOME,
    ChatTurnResult,
    Message,
)
from anu_companion.rate_limiter import RateLimiter

WELCOME_MESSAGE = (
    "Hello! I'm Anu, your compassionate companion. I'm here to listen without judgment and help "
    "you explore your thoughts and feelings. What's on your mind today? 🌱"
)

SUGGEST_EXERCISE_TEXT = (
    "Please suggest an exercise that might be helpful for me right now based on our conversation."
)


class ChatSession:
    """Plain-chat turns plus the session lifecycle (begin, end, background persistence)."""

    def __init__(
        self,
        store: SessionStore,
        assembler: ContextAssembler,
        client: CompletionClient,
        rate_limiter: RateLimiter,
        background: BackgroundTasks,
        insights: InsightScheduler | None = None,
        *,
        prune_history: Callable[[], int] | None = None,
    ):
        self._store = store
        self._assembler = assembler
        self._client = client
        self._rate_limiter = rate_limiter
        self._background = background
        self._insights = insights
        self._prune_history = prune_history

    def begin(self) -> Message:
        """Start a fresh interaction: detach any leftover session and greet the user."""
        leftover = self._store.clear_current_session()
        if leftover is not None:
            logger.info(f"Cleared leftover session {leftover}")
        welcome = Message.create(ROLE_WELCOME, WELCOME_MESSAGE)
        session_id = self._store.append_message(welcome)
        logger.info(f"Session {session_id} started")
        return welcome

    async def send_message(self, text: str) -> ChatTurnResult:
        text = text.strip()
        if not text:
            return ChatTurnResult(ok=False, error="Empty message")

        recent = self._store.get_last_chat_messages(self._assembler.chat_fetch_size)
        first_turn = not self._store.has_chat_reply()
        user_message = Message.create(ROLE_USER, text)
        session_id = self._store.append_message(user_message)
        offer = detect_exercise_confirmation(text, recent)
        if offer is not None:
            logger.info(f"Exercise confirmation detected by keywords: {offer.category}")

        quota = self._rate_limiter.can_proceed()
        if quota.limit_reached:
            notice = Message.create(ROLE_NOTICE, self._rate_limiter.limit_message(quota))
            self._store.append_message(notice)
            logger.info(f"Chat message blocked by daily limit ({quota.count}/{quota.limit})")
            return ChatTurnResult(
                ok=False,
                messages=[user_message, notice],
                exercise_offer=offer,
                limit_reached=True,
                error="quota_exceeded",
            )

        context = self._assembler.assemble_chat_context([*recent, user_message], first_turn=first_turn)
        result = await self._client.complete(context)
        if self._store.current_session_id() != session_id:
            logger.info(f"Dropping stale chat completion for session {session_id}")
            return ChatTurnResult(ok=False, messages=[user_message], stale=True)

        if not result.success:
            fallback = Message.create(ROLE_ASSISTANT, fallback_message(text))
            self._store.append_message(fallback)
            logger.warning(f"Chat completion failed ({result.error_kind}); fallback shown")
            return ChatTurnResult(
                ok=False,
                messages=[user_message, fallback],
                exercise_offer=offer,
                error=result.error,
            )

        self._rate_limiter.record_success()
        reply = Message.create(ROLE_ASSISTANT, result.message)
        self._store.append_message(reply)

        structured = structured_exercise_offer(result.next_action, result.exercise_type)
        if structured is not None:
            logger.info(f"Exercise card requested by model: {structured.category}")
            offer = structured

        status = self._rate_limiter.can_proceed()
        warning = self._rate_limiter.warning_message(status) if self._rate_limiter.should_show_warning(status) else None
        return ChatTurnResult(
            ok=True,
            messages=[user_message, reply],
            suggestions=result.suggestions,
            exercise_offer=offer,
            usage_warning=warning or None,
        )

    async def suggest_exercise(self) -> ChatTurnResult:
        return await self.send_message(SUGGEST_EXERCISE_TEXT)

    def end_session(self, *, save: bool = True) -> str | None:
        """Detach the current session and return at once; persistence and extraction run afterwards."""
        session = self._store.get_current_session()
        session_id = self._store.clear_current_session()
        if session_id is None:
            return None

        has_user_messages = session is not None and any(m.role == ROLE_USER for m in session["messages"])
        if not has_user_messages:
            self._store.discard_session(session_id)
            logger.info(f"Session {session_id} ended with no user messages; discarded")
            return session_id

        self._background.spawn(self._finish_session(session_id, save), name=f"session-end:{session_id[:8]}")
        logger.info(f"Session {session_id} ended (save={save}); background work scheduled")
        return session_id

    async def _finish_session(self, session_id: str, save: bool) -> None:
        if save:
            self._store.save_to_history(session_id)
            if self._prune_history is not None:
                self._prune_history()
        if self._insights is not None:
            await self._insights.extract_at_session_end(session_id)
        if not save:
            self._store.discard_session(session_id)

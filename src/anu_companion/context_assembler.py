from __future__ import annotations

from loguru import logger

from anu_companion.exercise_catalog import EXERCISE_FLOWS
from anu_companion.models import ROLE_ASSISTANT, ROLE_USER, ExerciseFlowDefinition, Message
from anu_companion.prompts import (
    build_chat_system_prompt,
    build_exercise_recap_prompt,
    build_exercise_system_prompt,
)

_CONVERSATION_ROLES = (ROLE_USER, ROLE_ASSISTANT)


def to_turns(messages: list[Message]) -> list[dict]:
    """Convert stored messages to provider turns, dropping welcome and notice messages."""
    return [
        {"role": m.role, "content": m.text}
        for m in messages
        if m.role in _CONVERSATION_ROLES and m.text.strip()
    ]


class ContextAssembler:
    """Builds bounded prompt payloads from session history.

    Every method is a pure function of its arguments: nothing is read from or
    written to the store here. Plain chat and exercise narration are kept in
    separate registers via ``Message.exercise_tag``.
    """

    def __init__(
        self,
        user_name: str | None = None,
        *,
        chat_history_turns: int = 10,
        exercise_history_turns: int = 3,
    ):
        self._user_name = user_name
        self._chat_window = max(1, chat_history_turns) * 2
        self._exercise_window = max(1, exercise_history_turns) * 2

    @property
    def chat_fetch_size(self) -> int:
        """How many recent messages callers should load so filtering still fills the window."""
        return self._chat_window * 2

    def assemble_chat_context(
        self,
        recent_messages: list[Message],
        *,
        first_turn: bool | None = None,
    ) -> list[dict]:
        """Build the plain-chat payload.

        ``first_turn`` defaults to a guess from ``recent_messages``. Callers that
        can see the whole session should pass it explicitly.
        """
        chat_messages = [m for m in recent_messages if m.exercise_tag is None]
        if first_turn is None:
            first_turn = not any(m.role == ROLE_ASSISTANT for m in chat_messages)
        system = build_chat_system_prompt(
            self._user_name,
            first_turn=first_turn,
            flows=list(EXERCISE_FLOWS.values()),
        )
        history = to_turns(chat_messages)[-self._chat_window :]
        logger.debug(f"Chat context: first_turn={first_turn}, turns={len(history)}")
        return [{"role": "system", "content": system}, *history]

    def assemble_exercise_step_context(
        self,
        recent_messages: list[Message],
        flow: ExerciseFlowDefinition,
        step_index: int,
        is_first_turn_in_step: bool,
        *,
        step_message_count: int = 0,
    ) -> list[dict]:
        step_index = min(max(0, step_index), flow.step_count - 1)
        system = build_exercise_system_prompt(
            self._user_name,
            flow,
            step_index,
            first_in_step=is_first_turn_in_step,
            step_message_count=step_message_count,
        )
        exercise_messages = [m for m in recent_messages if m.exercise_tag == flow.category]
        history = to_turns(exercise_messages)[-self._exercise_window :]
        logger.debug(
            f"Exercise context: flow={flow.category}, step={step_index + 1}/{flow.step_count}, "
            f"first_in_step={is_first_turn_in_step}, turns={len(history)}"
        )
        return [{"role": "system", "content": system}, *history]

    def assemble_exercise_recap_context(
        self,
        transcript: list[Message],
        flow: ExerciseFlowDefinition,
    ) -> list[dict]:
        turns = to_turns([m for m in transcript if m.exercise_tag == flow.category])
        return [
            {"role": "system", "content": build_exercise_recap_prompt(self._user_name, flow)},
            {"role": "user", "content": render_transcript(turns)},
        ]


def render_transcript(turns: list[dict]) -> str:
    """Flatten turns into one labelled block for single-shot summarization prompts."""
    lines = []
    for turn in turns:
        speaker = "User" if turn["role"] == ROLE_USER else "Anu"
        lines.append(f"{speaker}: {turn['content']}")
    return "\n\n".join(lines) if lines else "(no conversation)"

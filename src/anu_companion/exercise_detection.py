"""Keyword heuristic for "the user just agreed to the exercise we suggested".

This is free-text matching, not a structured signal. Callers should prefer
the model's ``nextAction``/``exerciseData`` fields and only fall back to
``detect_exercise_confirmation`` when those are absent.
"""

from __future__ import annotations

from anu_companion.exercise_catalog import EXERCISE_FLOWS, exercise_keywords, get_exercise_flow
from anu_companion.models import ROLE_ASSISTANT, ExerciseFlowDefinition, Message

SHOW_EXERCISE_CARD = "showExerciseCard"

POSITIVE_REPLIES = (
    "yes",
    "yeah",
    "ok",
    "okay",
    "sure",
    "let's try",
    "let me try",
    "i want to try",
    "yes please",
    "sounds good",
    "i'd like to",
    "i want to",
    "let's do it",
    "help me",
    "show me",
    "i'm ready",
    "let's start",
    "i need this",
)

SUGGESTION_PHRASES = ("would you like to try", "want to try", "exercise", "practice")

_ASSISTANT_LOOKBACK = 3


def detect_exercise_suggestion(text: str) -> str | None:
    """Return the category of an exercise the assistant text appears to offer."""
    lowered = text.lower()
    if not any(phrase in lowered for phrase in SUGGESTION_PHRASES):
        return None
    for category, keywords in exercise_keywords().items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return None


def detect_exercise_confirmation(user_text: str, recent: list[Message]) -> ExerciseFlowDefinition | None:
    lowered = user_text.lower()
    if not any(reply in lowered for reply in POSITIVE_REPLIES):
        return None

    assistant_turns = [m for m in recent if m.role == ROLE_ASSISTANT][-_ASSISTANT_LOOKBACK:]
    for message in reversed(assistant_turns):
        category = detect_exercise_suggestion(message.text)
        if category is not None:
            return EXERCISE_FLOWS[category]
    return None


def structured_exercise_offer(next_action: str | None, exercise_type: str | None) -> ExerciseFlowDefinition | None:
    """Resolve the model's explicit exercise-card request, if it names a known flow."""
    if next_action != SHOW_EXERCISE_CARD or not exercise_type:
        return None
    return get_exercise_flow(exercise_type)

from __future__ import annotations

import json
import re
import zlib

from loguru import logger

from anu_companion.errors import MalformedCompletion, ModelRejection, SummarizationFailure, TransportFailure
from anu_companion.models import CompletionResult, SummaryArtifact
from anu_companion.provider import LLMProvider

MAX_SUGGESTIONS = 4

FALLBACK_RESPONSES = (
    "I hear you, gentle soul. I'm having trouble connecting right now, but I want you to know "
    "that your feelings are valid and important. 🌿",
    "Thank you for sharing with me. I'm experiencing some technical difficulties, but please know "
    "that you're not alone in whatever you're feeling. 💚",
    "I'm listening to your heart, even though I'm having connection issues right now. "
    "Take a deep breath with me - in... and out... 🌊",
    "Your words matter, dear one. While I work through some technical challenges, remember that "
    "you are worthy of care and compassion. 🌸",
)

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")


def fallback_message(user_text: str) -> str:
    """Pick a canned reply; the same text always maps to the same reply."""
    index = zlib.crc32(user_text.encode("utf-8")) % len(FALLBACK_RESPONSES)
    return FALLBACK_RESPONSES[index]


def extract_json_object(raw: str) -> dict | None:
    """Return the JSON object in a reply, tolerating ```json fences and leading prose."""
    text = raw.strip()
    if not text:
        return None
    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1).strip()
    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None
        text = text[start : end + 1]
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return False


def _clean_suggestions(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    cleaned = [str(item).strip() for item in value if str(item).strip()]
    return cleaned[:MAX_SUGGESTIONS]


def parse_completion(raw: str) -> CompletionResult:
    """Parse a turn reply of shape {message, suggestions, nextStep, nextAction, exerciseData}.

    Plain prose replies are accepted as the message with no suggestions and no
    advance signal. Raises ModelRejection when the reply is empty, reports
    ``success: false``, or is a JSON object with no message.
    """
    if not raw or not raw.strip():
        raise ModelRejection("Empty completion")

    payload = extract_json_object(raw)
    if payload is None:
        if raw.lstrip().startswith("{"):
            raise MalformedCompletion("Completion looked like JSON but could not be parsed")
        return CompletionResult(success=True, message=raw.strip())

    if payload.get("success") is False:
        raise ModelRejection(str(payload.get("error") or "Model reported failure"))

    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        raise MalformedCompletion("Completion JSON has no message")

    exercise_data = payload.get("exerciseData") if isinstance(payload.get("exerciseData"), dict) else {}
    advance = payload.get("nextStep", payload.get("advance", False))
    return CompletionResult(
        success=True,
        message=message.strip(),
        suggestions=_clean_suggestions(payload.get("suggestions")),
        advance=_as_bool(advance),
        next_action=payload.get("nextAction") if isinstance(payload.get("nextAction"), str) else None,
        exercise_type=exercise_data.get("type") if isinstance(exercise_data.get("type"), str) else None,
    )


def parse_summary(raw: str) -> SummaryArtifact:
    payload = extract_json_object(raw)
    if payload is None:
        raise SummarizationFailure("Summary reply was not a JSON object")
    summary = payload.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise SummarizationFailure("Summary reply has no summary text")
    insights = payload.get("keyInsights") or []
    if not isinstance(insights, list):
        insights = [insights]
    return SummaryArtifact(
        summary=summary.strip(),
        key_insights=tuple(str(i).strip() for i in insights if str(i).strip()),
    )


def split_system(context: list[dict]) -> tuple[str, list[dict]]:
    system_parts = [m["content"] for m in context if m.get("role") == "system"]
    turns = [m for m in context if m.get("role") != "system"]
    return "\n\n".join(system_parts), turns


class CompletionClient:
    """Stateless request/response wrapper over an LLMProvider.

    ``complete`` never raises: transport failures and model rejections both
    come back as ``CompletionResult(success=False)`` so callers can route to
    a fallback message.
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        summary_temperature: float = 0.3,
    ):
        self._provider = provider
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._summary_temperature = summary_temperature

    async def complete(self, context: list[dict]) -> CompletionResult:
        system_prompt, turns = split_system(context)
        try:
            raw = await self._provider.create_message(
                self._model,
                self._max_tokens,
                self._temperature,
                system_prompt,
                turns,
            )
        except Exception as ex:
            failure = TransportFailure(f"{type(ex).__name__}: {ex}")
            logger.warning(f"Completion transport failure: {failure}")
            return CompletionResult(success=False, error=str(failure), error_kind="transport")

        try:
            result = parse_completion(raw)
        except ModelRejection as ex:
            logger.warning(f"Completion rejected: {ex}")
            return CompletionResult(success=False, error=str(ex), error_kind="rejection")

        logger.debug(
            f"Completion ok: chars={len(result.message or '')}, "
            f"suggestions={len(result.suggestions)}, advance={result.advance}"
        )
        return result

    async def complete_json(self, context: list[dict]) -> dict:
        """Request a JSON object; raises on transport failure or unparseable output."""
        system_prompt, turns = split_system(context)
        try:
            raw = await self._provider.create_message(
                self._model,
                self._max_tokens,
                self._summary_temperature,
                system_prompt,
                turns,
            )
        except Exception as ex:
            raise TransportFailure(f"{type(ex).__name__}: {ex}") from ex
        payload = extract_json_object(raw)
        if payload is None:
            raise MalformedCompletion("Expected a JSON object")
        return payload

    async def complete_summary(self, context: list[dict]) -> SummaryArtifact:
        system_prompt, turns = split_system(context)
        try:
            raw = await self._provider.create_message(
                self._model,
                self._max_tokens,
                self._summary_temperature,
                system_prompt,
                turns,
            )
        except Exception as ex:
            raise SummarizationFailure(f"{type(ex).__name__}: {ex}") from ex
        return parse_summary(raw)

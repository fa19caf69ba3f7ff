from __future__ import annotations

from typing import Protocol

import httpx
from loguru import logger
from tenacity import retry

from anu_companion.completion_client import CompletionClient
from anu_companion.models import ROLE_USER, InsightExtractionResult, Message, ThoughtPattern
from anu_companion.prompts import build_insight_extraction_prompt
from anu_companion.providers.common import default_retry_kwargs

_TIMEOUT_SECONDS = 30


class InsightExtractor(Protocol):
    async def extract(self, messages: list[Message], session_id: str) -> InsightExtractionResult: ...


def _serialize(messages: list[Message]) -> list[dict]:
    return [
        {
            "id": m.id,
            "role": m.role,
            "text": m.text,
            "timestamp": m.created_at,
        }
        for m in messages
    ]


def _parse_patterns(raw_patterns: object, session_id: str) -> list[ThoughtPattern]:
    if not isinstance(raw_patterns, list):
        return []
    patterns: list[ThoughtPattern] = []
    for item in raw_patterns:
        if not isinstance(item, dict):
            continue
        try:
            pattern = ThoughtPattern.from_payload(item, session_id)
        except (TypeError, ValueError) as ex:
            logger.debug(f"Skipping malformed pattern: {ex}")
            continue
        if pattern.original_thought:
            patterns.append(pattern)
    return patterns


class HttpInsightExtractor:
    """POSTs ``{messages, sessionId}`` to a hosted extraction function."""

    def __init__(self, endpoint_url: str, api_key: str | None = None, *, timeout: float = _TIMEOUT_SECONDS):
        self._endpoint_url = endpoint_url
        self._api_key = api_key
        self._timeout = timeout

    @retry(**default_retry_kwargs((httpx.TransportError,)))
    async def _post(self, body: dict) -> httpx.Response:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
            headers["apikey"] = self._api_key
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._endpoint_url, json=body, headers=headers)

    async def extract(self, messages: list[Message], session_id: str) -> InsightExtractionResult:
        response = await self._post({"messages": _serialize(messages), "sessionId": session_id})
        if response.status_code >= 400:
            return InsightExtractionResult(success=False, error=f"HTTP {response.status_code} from insight endpoint")

        data = response.json()
        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            return InsightExtractionResult(success=False, error=str(error or "Extraction reported failure"))
        return InsightExtractionResult(success=True, patterns=_parse_patterns(data.get("patterns"), session_id))


class ModelInsightExtractor:
    """Runs extraction through the completion provider instead of a hosted function."""

    def __init__(self, client: CompletionClient):
        self._client = client

    async def extract(self, messages: list[Message], session_id: str) -> InsightExtractionResult:
        lines = [
            f"[{m.id}] {'User' if m.role == ROLE_USER else 'Anu'}: {m.text}"
            for m in messages
            if m.text.strip()
        ]
        context = [
            {"role": "system", "content": build_insight_extraction_prompt()},
            {"role": "user", "content": "\n\n".join(lines)},
        ]
        payload = await self._client.complete_json(context)
        return InsightExtractionResult(success=True, patterns=_parse_patterns(payload.get("patterns"), session_id))

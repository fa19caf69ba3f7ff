import asyncio
import json
import unittest
from unittest.mock import AsyncMock, patch

import httpx

from tests.fakes import ScriptedProvider
from anu_companion.completion_client import CompletionClient
from anu_companion.errors import MalformedCompletion
from anu_companion.insight_extractors import HttpInsightExtractor, ModelInsightExtractor
from anu_companion.models import Message

_PATTERNS = [
    {
        "originalThought": "I always fail",
        "distortionTypes": ["overgeneralization"],
        "reframedThought": "I sometimes struggle",
        "confidence": 0.85,
        "extractedFrom": {"messageId": "m1"},
    },
    {"originalThought": "", "distortionTypes": [], "reframedThought": "", "confidence": 0.9},
    "not a pattern",
]


def _messages() -> list[Message]:
    return [Message.create("user", "I always fail at everything"), Message.create("assistant", "That sounds painful.")]


class HttpInsightExtractorTests(unittest.TestCase):
    def test_successful_extraction(self) -> None:
        extractor = HttpInsightExtractor("https://example.test/extract", "key")
        response = httpx.Response(200, json={"success": True, "patterns": _PATTERNS})

        with patch.object(extractor, "_post", AsyncMock(return_value=response)) as post:
            result = asyncio.run(extractor.extract(_messages(), "s1"))

        self.assertTrue(result.success)
        self.assertEqual(1, len(result.patterns))
        pattern = result.patterns[0]
        self.assertEqual(("overgeneralization",), pattern.distortion_types)
        self.assertEqual("m1", pattern.message_id)
        self.assertEqual("s1", pattern.session_id)
        body = post.call_args.args[0]
        self.assertEqual("s1", body["sessionId"])
        self.assertEqual(2, len(body["messages"]))

    def test_http_error(self) -> None:
        extractor = HttpInsightExtractor("https://example.test/extract")

        with patch.object(extractor, "_post", AsyncMock(return_value=httpx.Response(503))):
            result = asyncio.run(extractor.extract(_messages(), "s1"))

        self.assertFalse(result.success)
        self.assertIn("503", result.error)

    def test_reported_failure(self) -> None:
        extractor = HttpInsightExtractor("https://example.test/extract")
        response = httpx.Response(200, json={"success": False, "error": "quota"})

        with patch.object(extractor, "_post", AsyncMock(return_value=response)):
            result = asyncio.run(extractor.extract(_messages(), "s1"))

        self.assertFalse(result.success)
        self.assertEqual("quota", result.error)

    def test_post_sends_auth_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "patterns": []})

        real_client = httpx.AsyncClient
        transport = httpx.MockTransport(handler)
        extractor = HttpInsightExtractor("https://example.test/extract", "secret")

        with patch("anu_companion.insight_extractors.httpx.AsyncClient", lambda **kw: real_client(transport=transport, **kw)):
            result = asyncio.run(extractor.extract(_messages(), "s1"))

        self.assertTrue(result.success)
        self.assertEqual("Bearer secret", seen[0].headers["Authorization"])
        self.assertEqual("secret", seen[0].headers["apikey"])
        self.assertEqual("s1", json.loads(seen[0].content)["sessionId"])


class ModelInsightExtractorTests(unittest.TestCase):
    def test_extracts_through_completion_client(self) -> None:
        provider = ScriptedProvider([json.dumps({"patterns": _PATTERNS})])
        extractor = ModelInsightExtractor(CompletionClient(provider, "test-model"))
        messages = _messages()

        result = asyncio.run(extractor.extract(messages, "s1"))

        self.assertTrue(result.success)
        self.assertEqual(1, len(result.patterns))
        transcript = provider.calls[0]["messages"][0]["content"]
        self.assertIn(f"[{messages[0].id}] User: I always fail at everything", transcript)

    def test_unparseable_reply_raises(self) -> None:
        provider = ScriptedProvider(["I found nothing"])
        extractor = ModelInsightExtractor(CompletionClient(provider, "test-model"))

        with self.assertRaises(MalformedCompletion):
            asyncio.run(extractor.extract(_messages(), "s1"))


if __name__ == "__main__":
    unittest.main()

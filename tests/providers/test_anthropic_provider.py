import asyncio
import unittest
from types import SimpleNamespace

from anu_companion.providers.anthropic_provider import AnthropicProvider


class _FakeMessages:
    def __init__(self, create_response):
        self._create_response = create_response
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return self._create_response


class _FakeClient:
    def __init__(self, create_response):
        self.messages = _FakeMessages(create_response)


def _response(*blocks: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(
        stop_reason="end_turn",
        usage=SimpleNamespace(input_tokens=5, output_tokens=3),
        content=list(blocks),
    )


class AnthropicProviderTests(unittest.TestCase):
    def _make_provider(self, create_response) -> AnthropicProvider:
        provider = AnthropicProvider.__new__(AnthropicProvider)
        provider._client = _FakeClient(create_response)
        return provider

    def test_create_message_joins_text_blocks(self) -> None:
        provider = self._make_provider(
            _response(
                SimpleNamespace(type="text", text='{"message": '),
                SimpleNamespace(type="text", text='"hi"}'),
            )
        )

        result = asyncio.run(
            provider.create_message("m", 100, 0.7, "sys", [{"role": "user", "content": "hello"}])
        )

        self.assertEqual('{"message": "hi"}', result)
        call = provider._client.messages.calls[0]
        self.assertEqual("sys", call["system"])
        self.assertEqual(0.7, call["temperature"])

    def test_leading_assistant_turn_gets_user_opener(self) -> None:
        provider = self._make_provider(_response(SimpleNamespace(type="text", text="ok")))

        asyncio.run(
            provider.create_message("m", 100, 0.7, "sys", [{"role": "assistant", "content": "Welcome!"}])
        )

        sent = provider._client.messages.calls[0]["messages"]
        self.assertEqual("user", sent[0]["role"])
        self.assertEqual("assistant", sent[1]["role"])

    def test_consecutive_user_turns_are_merged(self) -> None:
        provider = self._make_provider(_response(SimpleNamespace(type="text", text="ok")))
        turns = [
            {"role": "user", "content": "first"},
            {"role": "user", "content": "second"},
            {"role": "assistant", "content": "reply"},
        ]

        asyncio.run(provider.create_message("m", 100, 0.7, "sys", turns))

        sent = provider._client.messages.calls[0]["messages"]
        self.assertEqual(2, len(sent))
        self.assertEqual("first\n\nsecond", sent[0]["content"])
        self.assertEqual("first", turns[0]["content"])


if __name__ == "__main__":
    unittest.main()

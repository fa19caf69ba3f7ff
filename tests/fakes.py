import asyncio
import json
from collections.abc import Awaitable, Callable


def reply(message: str, *, suggestions: list[str] | None = None, **extra) -> str:
    """A model reply in the JSON shape the prompts ask for."""
    return json.dumps({"message": message, "suggestions": suggestions or [], **extra})


class ScriptedProvider:
    """LLMProvider that returns (or raises) queued replies in order and records every request."""

    def __init__(self, replies: list[str | Exception] | None = None):
        self._replies = list(replies or [])
        self.calls: list[dict] = []
        self.before_reply: Callable[[], Awaitable[None]] | None = None

    def queue(self, *replies: str | Exception) -> None:
        self._replies.extend(replies)

    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ) -> str:
        self.calls.append(
            {
                "model": model,
                "temperature": temperature,
                "system_prompt": system_prompt,
                "messages": [dict(m) for m in messages],
            }
        )
        if self.before_reply is not None:
            await self.before_reply()
        if not self._replies:
            raise AssertionError("ScriptedProvider ran out of replies")
        item = self._replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class Gate:
    """Holds a provider call open until released, so a test can act mid-request."""

    def __init__(self):
        self.entered = asyncio.Event()
        self._release = asyncio.Event()

    async def wait(self) -> None:
        self.entered.set()
        await self._release.wait()

    def release(self) -> None:
        self._release.set()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

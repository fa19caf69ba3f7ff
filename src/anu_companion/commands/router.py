from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_exercise: Callable[[str], Awaitable[None]],
        on_mood: Callable[[str], Awaitable[None]],
        on_reflect: Callable[[str], Awaitable[None]],
        on_summary: Callable[[str], Awaitable[None]],
        on_quota: Callable[[str], Awaitable[None]],
        on_plan: Callable[[str], Awaitable[None]],
        on_history: Callable[[str], Awaitable[None]],
        on_insights: Callable[[], Awaitable[None]],
        on_activity: Callable[[str], Awaitable[None]],
        on_end: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_exercise = on_exercise
        self._on_mood = on_mood
        self._on_reflect = on_reflect
        self._on_summary = on_summary
        self._on_quota = on_quota
        self._on_plan = on_plan
        self._on_history = on_history
        self._on_insights = on_insights
        self._on_activity = on_activity
        self._on_end = on_end
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command = trimmed.split(maxsplit=1)[0].lower()
        if command == "/help":
            await self._on_help()
            return True
        if command == "/exercise":
            await self._on_exercise(trimmed)
            return True
        if command == "/mood":
            await self._on_mood(trimmed)
            return True
        if command == "/reflect":
            await self._on_reflect(trimmed)
            return True
        if command == "/summary":
            await self._on_summary(trimmed)
            return True
        if command == "/quota":
            await self._on_quota(trimmed)
            return True
        if command == "/plan":
            await self._on_plan(trimmed)
            return True
        if command == "/history":
            await self._on_history(trimmed)
            return True
        if command == "/insights":
            await self._on_insights()
            return True
        if command == "/activity":
            await self._on_activity(trimmed)
            return True
        if command == "/end":
            await self._on_end(trimmed)
            return True

        self._on_unknown(trimmed)
        return True

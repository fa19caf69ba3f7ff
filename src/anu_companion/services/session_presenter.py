from __future__ import annotations

from anu_companion.models import (
    ROLE_NOTICE,
    ROLE_USER,
    ExerciseFlowDefinition,
    Message,
    SummaryArtifact,
)
from anu_companion.rate_limiter import UsageSummary


class SessionPresenter:
    """Formats engine output as terminal lines. Holds no state beyond the prefix."""

    def __init__(self, *, line_prefix: str, short_id_len: int = 8):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_message(self, message: Message) -> list[str]:
        lines: list[str] = []
        if message.title:
            lines.append(f"{self._line_prefix}[{message.title}]")
        marker = "(i) " if message.role == ROLE_NOTICE else ""
        for i, line in enumerate(message.text.splitlines() or [""]):
            prefix = self._line_prefix if i == 0 else " " * len(self._line_prefix)
            lines.append(f"{prefix}{marker if i == 0 else ''}{line}")
        return lines

    def format_replies(self, messages: list[Message]) -> list[str]:
        """Everything the engine appended except the user's own words."""
        lines: list[str] = []
        for message in messages:
            if message.role == ROLE_USER:
                continue
            lines.extend(self.format_message(message))
        return lines

    def format_suggestions(self, suggestions: list[str]) -> list[str]:
        if not suggestions:
            return []
        return [f"{self._line_prefix}Suggestions: " + " | ".join(suggestions)]

    def format_exercise_card(self, flow: ExerciseFlowDefinition) -> list[str]:
        return [
            f"{self._line_prefix}Exercise: {flow.name} ({flow.step_count} steps)",
            f"{self._line_prefix}Type /exercise to begin, or keep chatting.",
        ]

    def format_summary(self, summary: SummaryArtifact, *, heading: str = "Summary") -> list[str]:
        lines = [f"{self._line_prefix}{heading}:", f"{self._line_prefix}{summary.summary}"]
        for insight in summary.key_insights:
            lines.append(f"{self._line_prefix}  - {insight}")
        return lines

    def format_usage(self, usage: UsageSummary, *, time_until_reset: str) -> list[str]:
        return [
            f"{self._line_prefix}Messages today: {usage.used}/{usage.total} ({usage.percentage}%)",
            f"{self._line_prefix}{usage.message}",
            f"{self._line_prefix}Resets in {time_until_reset}.",
        ]

    def format_history_entry(self, entry: dict) -> str:
        meta = entry.get("metadata", {})
        return (
            f"{self._line_prefix}[{self.short_id(entry['id'])}] {entry['updated_at']} "
            f"({meta.get('message_count', 0)} messages, ~{meta.get('duration', '?')}) "
            f"{meta.get('first_message', '')}"
        )

    def format_insight_stats(self, stats: dict) -> list[str]:
        if not stats["total_patterns"]:
            return [f"{self._line_prefix}No thought patterns recorded yet."]
        lines = [
            f"{self._line_prefix}Thought patterns: {stats['total_patterns']} "
            f"(last 7 days: {stats['recent_activity']}, "
            f"avg confidence: {stats['confidence_average']:.2f})"
        ]
        for item in stats["common_distortions"]:
            lines.append(f"{self._line_prefix}  - {item['name']}: {item['count']}")
        return lines

    def format_activity_entry(self, event: dict) -> str:
        session = f" [{self.short_id(event['session_id'])}]" if event.get("session_id") else ""
        return f"{self._line_prefix}{event['created_at']} {event['type']}{session}"

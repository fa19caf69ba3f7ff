"""Kind descriptors for the three reflection variants.

A descriptor supplies everything kind-specific: which payload fields are
required, how to open the conversation, what the end-of-reflection summary is
about, and where the saved artifact goes. ``ReflectionEngine`` itself is
shared.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from anu_companion.context_assembler import render_transcript
from anu_companion.models import ReflectionKind
from anu_companion.prompts import build_reflection_end_prompt, build_reflection_system_prompt


@dataclass(frozen=True)
class ReflectionKindDescriptor:
    kind: ReflectionKind
    destination: str
    required_fields: tuple[str, ...]
    opening_brief: Callable[[dict], str]
    subject: Callable[[dict], str]
    kickoff_text: Callable[[dict], str]

    @property
    def tag(self) -> str:
        return f"reflection:{self.kind.value}"

    def missing_fields(self, payload: dict) -> list[str]:
        return [name for name in self.required_fields if not str(payload.get(name) or "").strip()]

    def turn_context(self, payload: dict, transcript: list[dict]) -> list[dict]:
        """System brief plus the full reflection transcript, replayed verbatim."""
        system = build_reflection_system_prompt(self.opening_brief(payload))
        return [{"role": "system", "content": system}, *transcript]

    def end_context(self, payload: dict, transcript: list[dict], window: int) -> list[dict]:
        return [
            {"role": "system", "content": build_reflection_end_prompt(self.subject(payload))},
            {"role": "user", "content": render_transcript(transcript[-window:])},
        ]


def _prompt_line(payload: dict) -> str:
    prompt = str(payload.get("prompt") or "").strip()
    return f"\nStart from this reflection prompt: {prompt}" if prompt else ""


def _value_brief(payload: dict) -> str:
    description = str(payload.get("description") or "").strip()
    brief = (
        f'You are guiding a reflection on the personal value "{payload["value_name"]}". '
        "Help the user explore what this value means to them, where it shows up in their life, "
        "and where they would like to honor it more."
    )
    if description:
        brief += f'\nIn their own words, this value means: "{description}"'
    return brief + _prompt_line(payload)


def _thinking_pattern_brief(payload: dict) -> str:
    brief = (
        "You are guiding a reflection on a thinking pattern the user noticed.\n"
        f'Original thought: "{payload["original_thought"]}"\n'
        f"Distortion type: {payload['distortion_type']}\n"
    )
    reframed = str(payload.get("reframed_thought") or "").strip()
    if reframed:
        brief += f'Balanced reframe so far: "{reframed}"\n'
    brief += (
        "Help them notice when this pattern shows up, what it protects them from, "
        "and how the reframe feels in practice."
    )
    return brief + _prompt_line(payload)


def _vision_brief(payload: dict) -> str:
    description = str(payload.get("description") or "").strip()
    brief = (
        f'You are guiding a reflection on the user\'s vision "{payload["title"]}". '
        "Help them explore what this vision says about what matters to them and what a first "
        "step toward it could be."
    )
    if description:
        brief += f'\nThey describe it as: "{description}"'
    return brief + _prompt_line(payload)


VALUE = ReflectionKindDescriptor(
    kind=ReflectionKind.VALUE,
    destination="value_reflections",
    required_fields=("value_name",),
    opening_brief=_value_brief,
    subject=lambda p: f'the value "{p["value_name"]}"',
    kickoff_text=lambda p: f"I'd like to reflect on my value: {p['value_name']}.",
)

THINKING_PATTERN = ReflectionKindDescriptor(
    kind=ReflectionKind.THINKING_PATTERN,
    destination="thinking_pattern_reflections",
    required_fields=("original_thought", "distortion_type"),
    opening_brief=_thinking_pattern_brief,
    subject=lambda p: f"the thinking pattern \"{p['original_thought']}\" ({p['distortion_type']})",
    kickoff_text=lambda p: f'I\'d like to reflect on this thought: "{p["original_thought"]}".',
)

VISION = ReflectionKindDescriptor(
    kind=ReflectionKind.VISION,
    destination="vision_reflections",
    required_fields=("title",),
    opening_brief=_vision_brief,
    subject=lambda p: f'the vision "{p["title"]}"',
    kickoff_text=lambda p: f"I'd like to reflect on my vision: {p['title']}.",
)

REFLECTION_KINDS: dict[ReflectionKind, ReflectionKindDescriptor] = {
    d.kind: d for d in (VALUE, THINKING_PATTERN, VISION)
}

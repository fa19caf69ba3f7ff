from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_NOTICE = "notice"
ROLE_WELCOME = "welcome"

MESSAGE_ROLES = frozenset({ROLE_USER, ROLE_ASSISTANT, ROLE_NOTICE, ROLE_WELCOME})


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass(frozen=True)
class Message:
    id: str
    role: str
    text: str
    created_at: str
    title: str | None = None
    exercise_tag: str | None = None

    @classmethod
    def create(
        cls,
        role: str,
        text: str,
        *,
        title: str | None = None,
        exercise_tag: str | None = None,
    ) -> Message:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            id=str(uuid4()),
            role=role,
            text=text,
            created_at=utc_now(),
            title=title,
            exercise_tag=exercise_tag,
        )


@dataclass(frozen=True)
class ExerciseStep:
    title: str
    goal: str
    initial_prompt: str
    deepening_prompt: str


@dataclass(frozen=True)
class ExerciseFlowDefinition:
    category: str
    name: str
    steps: tuple[ExerciseStep, ...]
    keywords: tuple[str, ...] = ()
    requires_recap: bool = False

    @property
    def step_count(self) -> int:
        return len(self.steps)


@dataclass
class CompletionResult:
    success: bool
    message: str | None = None
    suggestions: list[str] = field(default_factory=list)
    advance: bool = False
    next_action: str | None = None
    exercise_type: str | None = None
    error: str | None = None
    error_kind: str | None = None


@dataclass(frozen=True)
class SummaryArtifact:
    summary: str
    key_insights: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.summary, "keyInsights": list(self.key_insights)}


@dataclass(frozen=True)
class ThoughtPattern:
    original_thought: str
    distortion_types: tuple[str, ...]
    reframed_thought: str
    confidence: float
    session_id: str
    message_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=utc_now)

    @classmethod
    def from_payload(cls, payload: dict, session_id: str) -> ThoughtPattern:
        """Build a pattern from the camelCase shape the extraction endpoint returns."""
        extracted_from = payload.get("extractedFrom") or {}
        distortions = payload.get("distortionTypes") or []
        if isinstance(distortions, str):
            distortions = [distortions]
        return cls(
            original_thought=str(payload.get("originalThought", "")).strip(),
            distortion_types=tuple(str(d) for d in distortions),
            reframed_thought=str(payload.get("reframedThought", "")).strip(),
            confidence=float(payload.get("confidence", 0.0)),
            session_id=session_id,
            message_id=extracted_from.get("messageId") if isinstance(extracted_from, dict) else None,
        )


@dataclass
class InsightExtractionResult:
    success: bool
    patterns: list[ThoughtPattern] = field(default_factory=list)
    error: str | None = None


@dataclass
class RateLimitRecord:
    date_key: str | None
    request_count: int
    request_limit: int


@dataclass(frozen=True)
class RateLimitStatus:
    count: int
    limit: int
    remaining: int
    limit_reached: bool


class ExercisePhase(StrEnum):
    IDLE = "idle"
    PRE_MOOD_CAPTURE = "pre_mood_capture"
    ACTIVE = "active"
    SUMMARY = "summary"
    POST_MOOD_CAPTURE = "post_mood_capture"


@dataclass
class ExerciseRuntimeState:
    flow: ExerciseFlowDefinition
    session_id: str | None = None
    step_index: int = 0
    step_message_counts: dict[int, int] = field(default_factory=dict)
    pre_mood: int | None = None
    started_at: float = 0.0
    summary: SummaryArtifact | None = None

    def count_for(self, step_index: int) -> int:
        return self.step_message_counts.get(step_index, 0)


@dataclass
class ExerciseTurnResult:
    ok: bool
    phase: ExercisePhase
    step_index: int | None = None
    messages: list[Message] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    summary: SummaryArtifact | None = None
    error: str | None = None
    stale: bool = False


class ReflectionKind(StrEnum):
    VALUE = "value"
    THINKING_PATTERN = "thinking_pattern"
    VISION = "vision"


class ReflectionPhase(StrEnum):
    IDLE = "idle"
    ACTIVE = "active"
    SUMMARY = "summary"


@dataclass
class ReflectionRuntimeState:
    kind: ReflectionKind
    payload: dict[str, Any]
    session_id: str | None = None
    message_count: int = 0
    started_at: float = 0.0
    can_end: bool = False
    transcript: list[dict] = field(default_factory=list)
    summary: SummaryArtifact | None = None


@dataclass
class ReflectionTurnResult:
    ok: bool
    phase: ReflectionPhase
    can_end: bool = False
    messages: list[Message] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    summary: SummaryArtifact | None = None
    error: str | None = None
    stale: bool = False


@dataclass
class ChatTurnResult:
    ok: bool
    messages: list[Message] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    exercise_offer: ExerciseFlowDefinition | None = None
    limit_reached: bool = False
    usage_warning: str | None = None
    error: str | None = None
    stale: bool = False

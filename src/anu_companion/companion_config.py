from dataclasses import dataclass

from anu_companion.background import BackgroundTasks
from anu_companion.chat_session import ChatSession
from anu_companion.exercise_engine import ExerciseFlowEngine
from anu_companion.insight_scheduler import InsightScheduler
from anu_companion.memory.session_store import SessionStore
from anu_companion.rate_limiter import RateLimiter, TierQuotaSource
from anu_companion.reflection_engine import ReflectionEngine


@dataclass
class CompanionConfig:
    store: SessionStore
    chat: ChatSession
    exercises: ExerciseFlowEngine
    reflections: ReflectionEngine
    rate_limiter: RateLimiter
    insights: InsightScheduler
    background: BackgroundTasks
    quota_source: TierQuotaSource | None = None

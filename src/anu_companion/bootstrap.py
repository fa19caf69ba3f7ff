from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from pathlib import Path

from loguru import logger

from anu_companion.app_config import AppConfig, RuntimeEnv
from anu_companion.background import BackgroundTasks
from anu_companion.chat_session import ChatSession
from anu_companion.companion import Companion
from anu_companion.companion_config import CompanionConfig
from anu_companion.completion_client import CompletionClient
from anu_companion.context_assembler import ContextAssembler
from anu_companion.exercise_engine import ExerciseFlowEngine
from anu_companion.insight_extractors import HttpInsightExtractor, InsightExtractor, ModelInsightExtractor
from anu_companion.insight_scheduler import InsightScheduler
from anu_companion.logging_config import setup_logging
from anu_companion.memory import EventEmitter, MemoryStore, SessionStore, prune_history
from anu_companion.provider import create_provider
from anu_companion.rate_limiter import RateLimiter, TierQuotaSource
from anu_companion.reflection_engine import ReflectionEngine


@dataclass
class AppRuntime:
    companion: Companion
    memory_store: MemoryStore
    background: BackgroundTasks
    log_descriptions: list[str]


def _build_extractor(app: AppConfig, env: RuntimeEnv, client: CompletionClient) -> InsightExtractor | None:
    if app.insight_extractor == "none":
        return None
    if app.insight_extractor == "http":
        if not app.insight_endpoint_url:
            logger.warning("InsightExtractor is 'http' but InsightEndpointUrl is not set; insights disabled")
            return None
        return HttpInsightExtractor(app.insight_endpoint_url, env.insight_endpoint_key)
    return ModelInsightExtractor(client)


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    db_path = Path(app.db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    log_descriptions = setup_logging(
        level=app.log_level,
        consumers=app.log_consumers,
        log_dir=db_path.parent,
        max_message_chars=app.log_max_message_chars,
    )
    memory_store = MemoryStore(str(db_path))
    store = SessionStore(memory_store, EventEmitter(memory_store))
    pruner = partial(
        prune_history,
        memory_store,
        max_sessions=app.history_max_sessions,
        retention_days=app.history_retention_days,
    )
    pruner()

    client = CompletionClient(
        create_provider(app.provider_name, env.provider_api_key),
        app.model,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
    )
    background = BackgroundTasks()
    quota_source = TierQuotaSource(app.daily_message_limits, app.subscription_tier)
    rate_limiter = RateLimiter(store, quota_source)
    assembler = ContextAssembler(
        app.user_name,
        chat_history_turns=app.chat_history_turns,
        exercise_history_turns=app.exercise_history_turns,
    )
    insights = InsightScheduler(
        store,
        _build_extractor(app, env, client),
        background,
        min_confidence=app.insight_min_confidence,
        min_message_chars=app.insight_min_user_message_chars,
    )

    companion = Companion(
        CompanionConfig(
            store=store,
            chat=ChatSession(
                store,
                assembler,
                client,
                rate_limiter,
                background,
                insights,
                prune_history=pruner,
            ),
            exercises=ExerciseFlowEngine(store, assembler, client, rate_limiter, insights),
            reflections=ReflectionEngine(
                store,
                client,
                rate_limiter,
                summary_window=app.reflection_summary_messages,
            ),
            rate_limiter=rate_limiter,
            insights=insights,
            background=background,
            quota_source=quota_source,
        )
    )

    return AppRuntime(
        companion=companion,
        memory_store=memory_store,
        background=background,
        log_descriptions=log_descriptions,
    )

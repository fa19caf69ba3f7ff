from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DAILY_LIMITS = {"free": 50, "pro": 100}


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str
    insight_endpoint_key: str | None


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    user_name: str | None
    subscription_tier: str
    daily_message_limits: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_DAILY_LIMITS))
    chat_history_turns: int = 10
    exercise_history_turns: int = 3
    reflection_summary_messages: int = 15
    insight_min_confidence: float = 0.6
    insight_min_user_message_chars: int = 20
    insight_extractor: str = "model"
    insight_endpoint_url: str | None = None
    db_path: str = ".anu/companion.db"
    history_max_sessions: int = 20
    history_retention_days: int = 90
    log_level: str = "INFO"
    log_consumers: list | None = None
    log_max_message_chars: int = 500


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _parse_limits(value: object) -> dict[str, int]:
    limits = dict(DEFAULT_DAILY_LIMITS)
    if isinstance(value, dict):
        for tier, quota in value.items():
            limits[str(tier).strip().lower()] = max(0, int(quota))
    return limits


def parse_app_config(config: dict) -> AppConfig:
    extractor = str(config.get("InsightExtractor", "model")).strip().lower()
    if extractor not in {"model", "http", "none"}:
        raise ValueError(f"Unknown InsightExtractor: {extractor!r}")
    if not _to_bool(config.get("InsightsEnabled", True), default=True):
        extractor = "none"

    return AppConfig(
        provider_name=config.get("Provider", "anthropic").strip().lower(),
        model=config.get("Model", "claude-sonnet-4-5-20250929"),
        max_tokens=int(config.get("MaxTokens", 1024)),
        temperature=float(config.get("Temperature", 0.7)),
        user_name=str(config.get("UserName", "")).strip() or None,
        subscription_tier=str(config.get("SubscriptionTier", "free")).strip().lower(),
        daily_message_limits=_parse_limits(config.get("DailyMessageLimits")),
        chat_history_turns=int(config.get("ChatHistoryTurns", 10)),
        exercise_history_turns=int(config.get("ExerciseHistoryTurns", 3)),
        reflection_summary_messages=int(config.get("ReflectionSummaryMessages", 15)),
        insight_min_confidence=float(config.get("InsightMinConfidence", 0.6)),
        insight_min_user_message_chars=int(config.get("InsightMinUserMessageChars", 20)),
        insight_extractor=extractor,
        insight_endpoint_url=str(config.get("InsightEndpointUrl", "")).strip() or None,
        db_path=str(config.get("DbPath", ".anu/companion.db")),
        history_max_sessions=int(config.get("HistoryMaxSessions", 20)),
        history_retention_days=int(config.get("HistoryRetentionDays", 90)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
        log_max_message_chars=max(0, int(config.get("LogMaxMessageChars", 500))),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "openai":
        provider_api_key = os.environ.get("OPENAI_API_KEY", "")
        provider_env_var = "OPENAI_API_KEY"
    else:
        provider_api_key = os.environ.get("ANTHROPIC_API_KEY", "")
        provider_env_var = "ANTHROPIC_API_KEY"

    return RuntimeEnv(
        provider_api_key=provider_api_key,
        provider_env_var=provider_env_var,
        insight_endpoint_key=os.environ.get("INSIGHT_ENDPOINT_KEY"),
    )

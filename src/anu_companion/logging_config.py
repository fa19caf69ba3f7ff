import sys
from functools import partial
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_TEXT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"

DEFAULT_LOG_DIR = ".anu"
DEFAULT_MAX_MESSAGE_CHARS = 500


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    """Stderr sink. Kept terse so it does not drown the conversation on stdout."""

    def register(self, level: str) -> None:
        logger.add(
            sys.stderr,
            level=level,
            format="<level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>",
        )

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = "anu.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_TEXT_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
        )

    def describe(self, level: str) -> str:
        kind = "jsonl" if self._serialize else "text"
        return f"file ({self._path}, {kind}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}


def clip_message(record: dict, max_chars: int) -> None:
    """Shorten overlong log messages.

    Exception text from a provider or parser can quote a whole model reply, and
    with it the conversation. Only lengths belong in the log.
    """
    message = record["message"]
    if max_chars > 0 and len(message) > max_chars:
        record["message"] = f"{message[:max_chars]}... [{len(message) - max_chars} chars clipped]"


def _default_consumers(log_dir: str | Path) -> list[dict[str, Any]]:
    # The console is off by default: the terminal front end owns stdout/stderr.
    return [{"type": "file", "path": str(Path(log_dir) / "anu.log")}]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    log_dir: str | Path = DEFAULT_LOG_DIR,
    max_message_chars: int = DEFAULT_MAX_MESSAGE_CHARS,
) -> list[str]:
    """Configure logging sinks. Returns a description of each registered consumer.

    Without explicit consumers a rotating file is written under ``log_dir``.
    Every message longer than ``max_message_chars`` is clipped before any sink
    sees it; 0 disables clipping.
    """
    logger.remove()
    logger.configure(patcher=partial(clip_message, max_chars=max_message_chars))

    if consumers is None:
        consumers = _default_consumers(log_dir)

    descriptions: list[str] = []

    for config in consumers:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)

        consumer = cls(**kwargs)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions

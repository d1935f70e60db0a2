"""
Logging setup: a Rich console for operators and JSON lines for machines.

Records may carry structured extras (``subsys``, ``chat_id``, ``user_id``,
``event``, ``detail``); both sinks understand them and both pass through the
same secret scrubber.
"""
import json
import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

from rich.logging import RichHandler

CONSOLE_HANDLER = "console"
JSONL_HANDLER = "jsonl"
NOISY_LOGGERS = ("openai", "httpx", "httpcore", "uvicorn.access", "PIL", "multipart")

_ICONS = ((logging.ERROR, "✖"), (logging.WARNING, "⚠"), (logging.INFO, "✔"))


class ConsoleFormatter(logging.Formatter):
    """Prefix each line with a level icon and the subsystem tag, when set."""

    def format(self, record: logging.LogRecord) -> str:
        icon = next((icon for level, icon in _ICONS if record.levelno >= level), "ℹ")
        subsys = getattr(record, "subsys", None)
        tag = f"[{subsys}] " if subsys else ""
        # Rich renders exc_info itself
        return f"{icon} {tag}{record.getMessage()}"


class JsonlFormatter(logging.Formatter):
    """One JSON object per line over a fixed key set; unset keys are omitted."""

    FIELDS = ("subsys", "chat_id", "user_id", "event", "detail")

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
        }
        for field in self.FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if "detail" not in entry:
            detail = record.getMessage()
            if record.exc_info:
                detail = f"{detail}\n{self.formatException(record.exc_info)}"
            entry["detail"] = detail
        return json.dumps(entry, ensure_ascii=False, default=str)


class SensitiveDataFilter(logging.Filter):
    """Redact credentials from messages and structured extras. [SFT]"""

    SECRET_KEYS = frozenset(key.lower() for key in (
        "OPENAI_API_KEY",
        "TELEGRAM_TOKEN",
        "TELEGRAM_WEBHOOK_SECRET",
        "Authorization",
        "api_key",
        "token",
        "secret_token",
        "bearer",
    ))

    # Telegram puts the bot token in every method and file URL
    PATTERNS = (
        (re.compile(r"bot\d+:[A-Za-z0-9_-]+"), "bot[REDACTED]"),
        (re.compile(r"sk-[A-Za-z0-9_-]{16,}"), "sk-[REDACTED]"),
    )

    def redact(self, text: str) -> str:
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _scrub(self, obj: Dict[str, Any]) -> None:
        for key, value in obj.items():
            if isinstance(value, dict):
                self._scrub(value)
            elif isinstance(value, str):
                obj[key] = "[REDACTED]" if str(key).lower() in self.SECRET_KEYS else self.redact(value)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
            redacted = self.redact(message)
            if redacted != message:
                record.msg, record.args = redacted, ()
            for value in list(record.__dict__.values()):
                if isinstance(value, dict):
                    self._scrub(value)
        except Exception:
            # A scrubber bug must not drop the record
            pass
        return True


def _console_handler() -> logging.Handler:
    handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False, log_time_format="[%X]")
    handler.set_name(CONSOLE_HANDLER)
    handler.setFormatter(ConsoleFormatter())
    return handler


def _jsonl_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.set_name(JSONL_HANDLER)
    handler.setFormatter(JsonlFormatter())
    return handler


def init_logging(level: Optional[str] = None, jsonl_path: Optional[str] = None) -> None:
    """Install the console and JSONL sinks on the root logger, replacing any others."""
    level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    path = Path(jsonl_path or os.getenv("LOG_JSONL_PATH", "logs/bot.jsonl"))

    handlers: List[logging.Handler] = [_console_handler()]
    try:
        handlers.append(_jsonl_handler(path))
    except OSError as e:
        sys.stderr.write(f"JSONL log sink disabled ({path}): {e}\n")

    scrubber = SensitiveDataFilter()
    for handler in handlers:
        handler.addFilter(scrubber)
    logging.basicConfig(level=level, handlers=handlers, force=True)

    quiet = os.getenv("THIRD_PARTY_LOG_LEVEL", "WARNING").upper()
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)

    get_logger(__name__).info(
        f"Logging at {level} to console and {path}", extra={"subsys": "logging", "event": "init"}
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def shutdown_logging_and_exit(exit_code: int) -> NoReturn:
    get_logger(__name__).info(f"Exiting with status {exit_code}", extra={"subsys": "logging"})
    logging.shutdown()
    sys.exit(exit_code)

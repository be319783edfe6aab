"""Configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})

DEFAULT_POLL_KEYWORDS = ("debit", "credit", "transaction", "payment")


@dataclass(frozen=True)
class ImapConfig:
    """IMAP connection configuration."""

    host: str
    username: str
    password: str
    port: int = 993
    folder: str = "INBOX"


@dataclass(frozen=True)
class PollerConfig:
    """Mailbox poller schedule and search settings."""

    interval_seconds: float = 60.0
    lookback_minutes: int = 1440
    keywords: tuple[str, ...] = DEFAULT_POLL_KEYWORDS
    max_results: int = 50
    overlap_seconds: int = 60


@dataclass(frozen=True)
class PipelineConfig:
    """Everything the pipeline needs besides connections and credentials."""

    ai_enabled: bool = False
    default_currency: str = "INR"
    backlog_interval_seconds: float = 300.0
    worker_threads: int = 4
    poll_enabled: bool = False
    poller: PollerConfig = field(default_factory=PollerConfig)


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ValueError(msg)
    return url


def get_imap_config() -> ImapConfig:
    """Build IMAP configuration from environment variables.

    Required: IMAP_HOST, IMAP_USERNAME, IMAP_PASSWORD
    Optional: IMAP_PORT (default 993), IMAP_FOLDER (default INBOX)
    """
    host = os.environ.get("IMAP_HOST")
    username = os.environ.get("IMAP_USERNAME")
    password = os.environ.get("IMAP_PASSWORD")

    missing = []
    if not host:
        missing.append("IMAP_HOST")
    if not username:
        missing.append("IMAP_USERNAME")
    if not password:
        missing.append("IMAP_PASSWORD")

    if missing:
        msg = f"Required environment variables not set: {', '.join(missing)}"
        raise ValueError(msg)

    port = _get_int("IMAP_PORT", 993)
    folder = os.environ.get("IMAP_FOLDER", "INBOX")

    return ImapConfig(
        host=host,  # type: ignore[arg-type]
        username=username,  # type: ignore[arg-type]
        password=password,  # type: ignore[arg-type]
        port=port,
        folder=folder,
    )


def get_anthropic_api_key() -> str:
    """Return the ANTHROPIC_API_KEY from the environment."""
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        msg = "ANTHROPIC_API_KEY environment variable is required"
        raise ValueError(msg)
    return key


def get_llm_model() -> str:
    """Return the pydantic-ai model identifier.

    Bare names (the default is claude-haiku-4-5-20251001) are served by
    Anthropic; ``provider:name`` values such as ``ollama:llama3.2`` pass
    through unchanged.
    """
    model = os.environ.get("LLM_MODEL", "claude-haiku-4-5-20251001")
    if ":" not in model:
        model = f"anthropic:{model}"
    return model


def get_llm_timeout() -> float:
    """Return the per-call LLM timeout in seconds (default 30)."""
    return _get_float("LLM_TIMEOUT_SECONDS", 30.0)


def get_log_level() -> str:
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def get_poller_config() -> PollerConfig:
    """Build poller settings from POLL_* environment variables."""
    raw_keywords = os.environ.get("POLL_KEYWORDS")
    if raw_keywords:
        keywords = tuple(k.strip() for k in raw_keywords.split(",") if k.strip())
    else:
        keywords = DEFAULT_POLL_KEYWORDS

    return PollerConfig(
        interval_seconds=_get_float("POLL_INTERVAL_SECONDS", 60.0),
        lookback_minutes=_get_int("POLL_LOOKBACK_MINUTES", 1440),
        keywords=keywords,
        max_results=_get_int("POLL_MAX_RESULTS", 50),
    )


def get_pipeline_config() -> PipelineConfig:
    """Build the pipeline configuration from the environment."""
    return PipelineConfig(
        ai_enabled=_get_bool("AI_ENABLED", False),
        default_currency=os.environ.get("DEFAULT_CURRENCY", "INR"),
        backlog_interval_seconds=_get_float("BACKLOG_INTERVAL_SECONDS", 300.0),
        worker_threads=_get_int("WORKER_THREADS", 4),
        poll_enabled=_get_bool("POLL_ENABLED", False),
        poller=get_poller_config(),
    )


def _get_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _get_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        msg = f"{name} must be an integer, got {value!r}"
        raise ValueError(msg) from None


def _get_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        msg = f"{name} must be a number, got {value!r}"
        raise ValueError(msg) from None

"""Tests for ledger_ingest.config."""

from __future__ import annotations

import pytest

from ledger_ingest.config import (
    DEFAULT_POLL_KEYWORDS,
    ImapConfig,
    get_anthropic_api_key,
    get_database_url,
    get_imap_config,
    get_llm_model,
    get_llm_timeout,
    get_pipeline_config,
    get_poller_config,
)


class TestGetImapConfig:
    """Tests for get_imap_config()."""

    def test_valid_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
        monkeypatch.setenv("IMAP_PASSWORD", "pass123")  # pragma: allowlist secret
        monkeypatch.delenv("IMAP_PORT", raising=False)
        monkeypatch.delenv("IMAP_FOLDER", raising=False)

        config = get_imap_config()

        assert config.host == "mail.example.com"
        assert config.username == "user@example.com"
        assert config.password == "pass123"  # pragma: allowlist secret
        assert config.port == 993
        assert config.folder == "INBOX"

    def test_custom_port_and_folder(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
        monkeypatch.setenv("IMAP_PASSWORD", "pass123")  # pragma: allowlist secret
        monkeypatch.setenv("IMAP_PORT", "143")
        monkeypatch.setenv("IMAP_FOLDER", "Bank Alerts")

        config = get_imap_config()

        assert config.port == 143
        assert config.folder == "Bank Alerts"

    def test_missing_all_required_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("IMAP_HOST", raising=False)
        monkeypatch.delenv("IMAP_USERNAME", raising=False)
        monkeypatch.delenv("IMAP_PASSWORD", raising=False)

        with pytest.raises(
            ValueError, match=r"IMAP_HOST.*IMAP_USERNAME.*IMAP_PASSWORD"
        ):
            get_imap_config()

    def test_missing_password_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
        monkeypatch.delenv("IMAP_PASSWORD", raising=False)

        with pytest.raises(ValueError, match="IMAP_PASSWORD"):
            get_imap_config()

    def test_non_numeric_port_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
        monkeypatch.setenv("IMAP_PASSWORD", "pass123")  # pragma: allowlist secret
        monkeypatch.setenv("IMAP_PORT", "imaps")

        with pytest.raises(ValueError, match="IMAP_PORT"):
            get_imap_config()

    def test_config_is_frozen(self) -> None:
        config = ImapConfig(
            host="mail.example.com",
            username="user@example.com",
            password="pass",  # pragma: allowlist secret
        )
        with pytest.raises(AttributeError):
            config.host = "other.example.com"  # type: ignore[misc]


class TestGetDatabaseUrl:
    def test_present(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/ledger")
        assert get_database_url() == "postgresql://localhost/ledger"

    def test_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_database_url()


class TestGetAnthropicApiKey:
    """Tests for get_anthropic_api_key()."""

    def test_key_present(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key")
        assert get_anthropic_api_key() == "sk-ant-test-key"

    def test_key_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            get_anthropic_api_key()


class TestGetLlmModel:
    """Tests for get_llm_model()."""

    def test_default_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("LLM_MODEL", raising=False)
        assert get_llm_model() == "anthropic:claude-haiku-4-5-20251001"

    def test_bare_name_gets_anthropic_prefix(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LLM_MODEL", "claude-sonnet-4-20250514")
        assert get_llm_model() == "anthropic:claude-sonnet-4-20250514"

    def test_provider_prefix_passes_through(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LLM_MODEL", "ollama:llama3.2")
        assert get_llm_model() == "ollama:llama3.2"

    def test_timeout_default_and_override(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("LLM_TIMEOUT_SECONDS", raising=False)
        assert get_llm_timeout() == 30.0
        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "12.5")
        assert get_llm_timeout() == 12.5


class TestPipelineConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in (
            "AI_ENABLED",
            "DEFAULT_CURRENCY",
            "BACKLOG_INTERVAL_SECONDS",
            "WORKER_THREADS",
            "POLL_ENABLED",
            "POLL_KEYWORDS",
            "POLL_INTERVAL_SECONDS",
            "POLL_LOOKBACK_MINUTES",
            "POLL_MAX_RESULTS",
        ):
            monkeypatch.delenv(name, raising=False)

        config = get_pipeline_config()

        assert config.ai_enabled is False
        assert config.default_currency == "INR"
        assert config.backlog_interval_seconds == 300.0
        assert config.worker_threads == 4
        assert config.poll_enabled is False
        assert config.poller.keywords == DEFAULT_POLL_KEYWORDS
        assert config.poller.lookback_minutes == 1440
        assert config.poller.max_results == 50
        assert config.poller.overlap_seconds == 60

    def test_flags_and_keywords(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AI_ENABLED", "true")
        monkeypatch.setenv("POLL_ENABLED", "1")
        monkeypatch.setenv("POLL_KEYWORDS", " debited , UPI,,credited ")

        config = get_pipeline_config()

        assert config.ai_enabled is True
        assert config.poll_enabled is True
        assert config.poller.keywords == ("debited", "UPI", "credited")

    def test_unrecognised_bool_is_false(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AI_ENABLED", "maybe")
        assert get_pipeline_config().ai_enabled is False

    def test_poller_interval(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "15")
        assert get_poller_config().interval_seconds == 15.0

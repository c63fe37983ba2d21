"""Tests for settings normalization."""

import pytest
from pydantic import ValidationError

from civictrack.config import Settings


class TestDatabaseUrl:
    def test_postgres_scheme_rewritten(self):
        s = Settings(database_url="postgres://u:p@host:5432/db")
        assert s.database_url == "postgresql+asyncpg://u:p@host:5432/db"

    def test_postgresql_scheme_rewritten(self):
        s = Settings(database_url="postgresql://u:p@host/db")
        assert s.database_url == "postgresql+asyncpg://u:p@host/db"

    def test_sslmode_stripped_and_mapped(self):
        s = Settings(database_url="postgresql://u:p@host/db?sslmode=require")
        assert s.database_url == "postgresql+asyncpg://u:p@host/db"
        assert s.database_require_ssl is True

    def test_sslmode_disable_not_ssl(self):
        s = Settings(database_url="postgresql://u:p@host/db?sslmode=disable")
        assert s.database_url == "postgresql+asyncpg://u:p@host/db"
        assert s.database_require_ssl is False

    def test_sqlite_untouched(self):
        s = Settings(database_url="sqlite+aiosqlite:///./civictrack.db")
        assert s.database_url == "sqlite+aiosqlite:///./civictrack.db"


class TestDefaults:
    def test_agent_and_retention(self):
        s = Settings()
        assert s.max_agent_turns == 8
        assert s.history_window == 10
        assert s.max_stored_messages == 50
        assert s.conversation_ttl_days == 7
        assert s.llm_temperature == 0.2

    def test_api_key_whitespace_stripped(self):
        assert Settings(groq_api_key="  key-123\n").groq_api_key == "key-123"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MAX_AGENT_TURNS", "3")
        monkeypatch.setenv("GROQ_API_KEY", "from-env")
        s = Settings()
        assert s.max_agent_turns == 3
        assert s.groq_api_key == "from-env"

    def test_history_window_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(history_window=0)

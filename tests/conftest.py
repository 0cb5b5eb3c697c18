"""
Pytest configuration for the test suite.

Everything here runs offline: the chat completion client and the pyodbc
connection are replaced by in-memory fakes.
"""

from datetime import datetime
from typing import List, Optional, Sequence

import pytest

from dealer_query.models import ChatMessage, LLMResponse


def pytest_configure(config):
    """Register custom pytest marks."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests that require a live database or model",
    )


class FakeLLMClient:
    """Returns canned completions and records every message list it receives."""

    def __init__(
        self,
        content: Optional[str] = None,
        *,
        success: bool = True,
        errors: Optional[List[str]] = None,
        raises: Optional[Exception] = None,
        available: bool = True,
    ):
        self.content = content
        self.success = success
        self.errors = errors or []
        self.raises = raises
        self.available = available
        self.calls: List[dict] = []

    def is_available(self) -> bool:
        return self.available

    def complete(self, messages, model=None, temperature=None, max_tokens=None):
        self.calls.append(
            {"messages": list(messages), "model": model, "temperature": temperature}
        )
        if self.raises is not None:
            raise self.raises
        return LLMResponse(
            success=self.success,
            content=self.content,
            model_version=model or "test-model",
            processing_time_ms=5,
            token_usage={"prompt_tokens": 120, "completion_tokens": 30, "total_tokens": 150},
            errors=self.errors,
        )

    @property
    def last_messages(self) -> List[ChatMessage]:
        return self.calls[-1]["messages"]


class FakeCursor:
    def __init__(self, columns: Sequence[str], rows: Sequence[tuple], error=None):
        self._columns = list(columns)
        self._rows = list(rows)
        self._error = error
        self.executed: List[tuple] = []

    @property
    def description(self):
        if not self._columns:
            return None
        return [(name, None, None, None, None, None, None) for name in self._columns]

    def execute(self, sql, *params):
        self.executed.append((sql, params))
        if self._error is not None:
            raise self._error
        return self

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self, cursor: FakeCursor):
        self._cursor = cursor
        self.closed = False
        self.timeout = 0

    def cursor(self):
        return self._cursor

    def close(self):
        self.closed = True


@pytest.fixture
def fixed_now() -> datetime:
    """Wednesday 15 October 2025, 10:30."""
    return datetime(2025, 10, 15, 10, 30)


@pytest.fixture
def fake_llm():
    """Factory for FakeLLMClient instances."""

    def _make(content: Optional[str] = None, **kwargs) -> FakeLLMClient:
        return FakeLLMClient(content, **kwargs)

    return _make


@pytest.fixture
def fake_connect():
    """
    Factory returning ``(connect_fn, connections)``.

    ``connect_fn`` mimics ``pyodbc.connect`` and records each connection string.
    """

    def _make(columns=(), rows=(), error=None):
        connections: List[FakeConnection] = []
        connection_strings: List[str] = []

        def connect(connection_string):
            connection_strings.append(connection_string)
            conn = FakeConnection(FakeCursor(columns, rows, error=error))
            connections.append(conn)
            return conn

        connect.connections = connections
        connect.connection_strings = connection_strings
        return connect

    return _make


@pytest.fixture
def db_config(monkeypatch):
    """Config pointing at a (fake) SQL Server with the static schema."""
    from dealer_query.config import Config

    for name in ("SCHEMA_SOURCE", "REDIS_URL", "SESSION_LOG_FILE", "DB_QUERY_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DB_HOST", "sql.example.local")
    monkeypatch.setenv("DB_NAME", "DealerReports")
    monkeypatch.setenv("DB_USER", "report_reader")
    monkeypatch.setenv("DB_PASSWORD", "secret")
    return Config()

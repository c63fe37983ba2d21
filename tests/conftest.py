"""Shared test fixtures."""

import uuid

import mlflow
import pytest

from civictrack.storage.db import Database
from civictrack.storage.models import IssueRow


@pytest.fixture(autouse=True)
def _disable_mlflow_tracing():
    """Disable MLflow tracing during tests — no side effects, no mlruns/ writes."""
    mlflow.tracing.disable()
    yield
    mlflow.tracing.enable()


@pytest.fixture
async def db():
    """Fresh in-memory SQLite database per test."""
    database = Database("sqlite+aiosqlite://")
    await database.init()
    yield database
    await database.dispose()


@pytest.fixture
def seed_issue(db):
    """Insert an issue row directly, with control over timestamps and counts."""

    async def _seed(
        title: str = "Pothole on Main Street",
        user_id: str = "u1",
        status: str = "open",
        category: str = "roads",
        latitude: float = 10.0,
        longitude: float = 10.0,
        upvotes: int = 0,
        created_at: int = 1_000,
        address: str = "Main Street",
    ) -> str:
        row = IssueRow(
            id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            description="Something needs fixing here.",
            category=category,
            status=status,
            latitude=latitude,
            longitude=longitude,
            address=address,
            upload_urls=[],
            upvotes=upvotes,
            resolution_upload_urls=[],
            created_at=created_at,
            updated_at=created_at,
        )
        async with db.session() as session:
            session.add(row)
            await session.commit()
        return row.id

    return _seed


class FakeLLM:
    """Scripted stand-in for LLMClient: returns queued responses in order."""

    def __init__(self, responses=None, configured: bool = True):
        self.responses = list(responses or [])
        self.calls: list[dict] = []
        self._configured = configured

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def complete(self, messages, tools=None):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        if not self.responses:
            return None
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @staticmethod
    def text(content: str) -> dict:
        return {"content": content, "tool_calls": []}

    @staticmethod
    def tool(name: str, arguments: str = "{}", call_id: str = "call_1", content: str = "") -> dict:
        return {
            "content": content,
            "tool_calls": [{"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}],
        }


@pytest.fixture
def make_llm():
    """Factory for scripted LLM clients: make_llm([FakeLLM.text("hi")])."""
    return FakeLLM

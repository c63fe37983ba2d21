"""Service wiring and request dependencies.

build_services() constructs every long-lived object once (database,
stores, query engine, tool registry, LLM client, orchestrator); the app
lifespan stores the result on app.state and route handlers pull it out
through get_services().

Identity comes from the gateway as headers. Authentication itself is not
done here: X-User-Id is trusted, X-User-Admin marks admins.
"""

import logging
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request

from civictrack.config import Settings
from civictrack.core.types import Actor
from civictrack.observability.prompts import get_active_prompt
from civictrack.pipeline.agent import ChatOrchestrator
from civictrack.pipeline.tools import ToolRegistry
from civictrack.retrieval.llm import LLMClient
from civictrack.retrieval.query import QueryEngine
from civictrack.storage.conversations import ConversationStore
from civictrack.storage.db import Database
from civictrack.storage.issues import IssueStore
from civictrack.storage.users import UserDirectory

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes")


@dataclass
class Services:
    db: Database
    users: UserDirectory
    issues: IssueStore
    conversations: ConversationStore
    queries: QueryEngine
    tools: ToolRegistry
    llm: LLMClient
    orchestrator: ChatOrchestrator


def build_services(settings: Settings, db: Database | None = None, llm: LLMClient | None = None) -> Services:
    """Build the object graph. Tests pass their own db / llm."""
    db = db or Database.from_settings(settings)
    llm = llm or LLMClient.from_settings(settings)
    users = UserDirectory(db)
    issues = IssueStore(db)
    conversations = ConversationStore(
        db,
        max_messages=settings.max_stored_messages,
        ttl_days=settings.conversation_ttl_days,
    )
    queries = QueryEngine(issues, users)
    tools = ToolRegistry(queries, issues)
    orchestrator = ChatOrchestrator(
        conversations,
        tools,
        llm,
        system_prompt=get_active_prompt("chat_agent"),
        max_turns=settings.max_agent_turns,
        history_window=settings.history_window,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    return Services(
        db=db,
        users=users,
        issues=issues,
        conversations=conversations,
        queries=queries,
        tools=tools,
        llm=llm,
        orchestrator=orchestrator,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


async def current_actor(
    x_user_id: str | None = Header(None),
    x_user_admin: str | None = Header(None),
) -> Actor:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Actor(user_id=x_user_id, is_admin=(x_user_admin or "").strip().lower() in _TRUTHY)


async def current_user_name(x_user_name: str | None = Header(None)) -> str | None:
    return x_user_name or None

"""Conversation store — per-user dialogue sessions with bounded history and TTL.

One conversation per user is canonical: the most recently updated active
one that hasn't expired. History is trimmed FIFO on every save, and
conversations idle for longer than the TTL are hidden from reads and
removed by purge_expired(), which the API runs as a periodic sweep.
"""

import logging
import uuid

from sqlalchemy import delete, select, update

from civictrack.core.types import Conversation, ConversationContext, Message, now_ms
from civictrack.storage.db import Database
from civictrack.storage.models import ConversationRow

logger = logging.getLogger(__name__)

MAX_STORED_MESSAGES = 50
CONVERSATION_TTL_DAYS = 7
_DAY_MS = 24 * 60 * 60 * 1000


def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id,
        user_id=row.user_id,
        messages=[
            Message(role=m["role"], content=m["content"], timestamp=m.get("timestamp", 0))
            for m in (row.messages or [])
        ],
        context=ConversationContext.from_dict(row.context),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _serialize_messages(messages: list[Message]) -> list[dict]:
    return [{"role": m.role, "content": m.content, "timestamp": m.timestamp} for m in messages]


class ConversationStore:
    def __init__(
        self,
        db: Database,
        max_messages: int = MAX_STORED_MESSAGES,
        ttl_days: int = CONVERSATION_TTL_DAYS,
    ):
        self._db = db
        self._max = max_messages
        self._ttl_ms = ttl_days * _DAY_MS

    @property
    def max_messages(self) -> int:
        return self._max

    def _cutoff(self, now: int | None = None) -> int:
        return (now if now is not None else now_ms()) - self._ttl_ms

    async def get_active(self, user_id: str) -> Conversation | None:
        stmt = (
            select(ConversationRow)
            .where(
                ConversationRow.user_id == user_id,
                ConversationRow.is_active.is_(True),
                ConversationRow.updated_at >= self._cutoff(),
            )
            .order_by(ConversationRow.updated_at.desc())
            .limit(1)
        )
        async with self._db.session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _to_conversation(row) if row else None

    async def get_or_create_active(self, user_id: str) -> Conversation:
        """Return the user's canonical conversation, creating one if none is live."""
        conversation = await self.get_active(user_id)
        if conversation is not None:
            return conversation

        now = now_ms()
        conversation = Conversation(id=uuid.uuid4().hex, user_id=user_id, created_at=now, updated_at=now)
        async with self._db.session() as session:
            session.add(ConversationRow(
                id=conversation.id,
                user_id=user_id,
                messages=[],
                context={},
                is_active=True,
                created_at=now,
                updated_at=now,
            ))
            await session.commit()
        logger.info("Started conversation %s", conversation.id, extra={"user_id": user_id})
        return conversation

    def append(self, conversation: Conversation, message: Message) -> None:
        conversation.messages.append(message)

    def trim(self, conversation: Conversation) -> None:
        """Drop the oldest messages until at most max_messages remain."""
        overflow = len(conversation.messages) - self._max
        if overflow > 0:
            del conversation.messages[:overflow]

    async def save(self, conversation: Conversation) -> None:
        """Persist history, context and the active flag; bumps updated_at.

        A conversation whose row was swept since it was loaded is written
        back under the same id. Saving never reopens a conversation that
        was closed after it was loaded.
        """
        self.trim(conversation)
        conversation.updated_at = max(now_ms(), conversation.created_at)
        if conversation.id is None:
            conversation.id = uuid.uuid4().hex

        async with self._db.session() as session:
            row = await session.get(ConversationRow, conversation.id)
            if row is None:
                row = ConversationRow(id=conversation.id, user_id=conversation.user_id,
                                      created_at=conversation.created_at)
                session.add(row)
            elif not row.is_active:
                conversation.is_active = False
            row.messages = _serialize_messages(conversation.messages)
            row.context = conversation.context.to_dict()
            row.is_active = conversation.is_active
            row.updated_at = conversation.updated_at
            await session.commit()

    async def close_active(self, user_id: str) -> bool:
        """Mark the user's active conversations inactive. Returns whether any were open."""
        async with self._db.session() as session:
            result = await session.execute(
                update(ConversationRow)
                .where(ConversationRow.user_id == user_id, ConversationRow.is_active.is_(True))
                .values(is_active=False, updated_at=now_ms())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return bool(result.rowcount)

    async def purge_expired(self, now: int | None = None) -> int:
        """Delete conversations not updated within the TTL. Returns the count removed."""
        async with self._db.session() as session:
            result = await session.execute(
                delete(ConversationRow)
                .where(ConversationRow.updated_at < self._cutoff(now))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount:
            logger.info("Purged %d expired conversations", result.rowcount)
        return result.rowcount or 0

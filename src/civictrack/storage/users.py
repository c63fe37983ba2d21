"""Display-name lookups against the user collaborator.

Accounts are owned by the auth service; this module only reads names
(and lets tests and the CLI seed them).
"""

import logging

from sqlalchemy import select

from civictrack.storage.db import Database
from civictrack.storage.models import UserRow

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "User"


class UserDirectory:
    def __init__(self, db: Database):
        self._db = db

    async def display_names(self, user_ids: list[str] | set[str]) -> dict[str, str]:
        """Resolve many user ids in one query.

        Ids with no matching user are absent from the result; callers fall
        back to PLACEHOLDER_NAME.
        """
        ids = {uid for uid in user_ids if uid}
        if not ids:
            return {}
        async with self._db.session() as session:
            result = await session.execute(select(UserRow.id, UserRow.name).where(UserRow.id.in_(ids)))
            return {row.id: row.name for row in result}

    async def get_name(self, user_id: str) -> str | None:
        async with self._db.session() as session:
            row = await session.get(UserRow, user_id)
            return row.name if row else None

    async def upsert(self, user_id: str, name: str, email: str | None = None) -> None:
        async with self._db.session() as session:
            row = await session.get(UserRow, user_id)
            if row is None:
                session.add(UserRow(id=user_id, name=name, email=email))
            else:
                row.name = name
                if email is not None:
                    row.email = email
            await session.commit()

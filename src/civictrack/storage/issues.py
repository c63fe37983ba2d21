"""Issue store — filtered scans, single-record mutations and cascade delete.

Mutations that read-then-write a record (status update, upvote toggle)
run in one transaction and lock the issue row (SELECT ... FOR UPDATE on
PostgreSQL). Upvote counts are adjusted with SQL arithmetic, conditional
on whether the voter's row was deleted or inserted, so concurrent toggles
by the same user can't drift the count away from the voter set.
"""

import logging
import uuid

from sqlalchemy import case, delete, func, select, update

from civictrack.core.errors import NotFoundError, UnauthorizedError, ValidationError
from civictrack.core.types import (
    ISSUE_STATUSES,
    Actor,
    Comment,
    Issue,
    IssueStatistics,
    Location,
    NewIssue,
    now_ms,
)
from civictrack.storage.db import Database
from civictrack.storage.models import CommentRow, IssueRow, IssueUpvoteRow

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _to_issue(row: IssueRow, voters: list[str] | None = None) -> Issue:
    return Issue(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        category=row.category,
        location=Location(latitude=row.latitude, longitude=row.longitude, address=row.address),
        status=row.status,
        upload_urls=list(row.upload_urls or []),
        upvotes=row.upvotes or 0,
        upvoted_by=voters or [],
        resolution_message=row.resolution_message,
        resolution_upload_urls=list(row.resolution_upload_urls or []),
        resolved_at=row.resolved_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_comment(row: CommentRow) -> Comment:
    return Comment(
        id=row.id,
        issue_id=row.issue_id,
        user_id=row.user_id,
        comment=row.comment,
        upload_urls=list(row.upload_urls or []),
        is_admin=bool(row.is_admin),
        created_at=row.created_at,
    )


def _filtered(stmt, status: str | None, category: str | None, user_id: str | None):
    if status:
        stmt = stmt.where(IssueRow.status == status)
    if category:
        stmt = stmt.where(IssueRow.category == category)
    if user_id:
        stmt = stmt.where(IssueRow.user_id == user_id)
    return stmt


def _check_owner_or_admin(row: IssueRow, actor: Actor, action: str) -> None:
    if not actor.is_admin and row.user_id != actor.user_id:
        raise UnauthorizedError(f"You don't have permission to {action} this issue")


class IssueStore:
    def __init__(self, db: Database):
        self._db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count_issues(
        self,
        status: str | None = None,
        category: str | None = None,
        user_id: str | None = None,
    ) -> int:
        stmt = _filtered(select(func.count()).select_from(IssueRow), status, category, user_id)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def find_issues(
        self,
        status: str | None = None,
        category: str | None = None,
        user_id: str | None = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Issue]:
        """Filtered scan. ``limit=None`` returns the whole filtered set."""
        column = IssueRow.upvotes if sort_by == "upvotes" else IssueRow.created_at
        order = column.asc() if sort_order == "asc" else column.desc()
        stmt = _filtered(select(IssueRow), status, category, user_id).order_by(order, IssueRow.id.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._db.session() as session:
            rows = list((await session.execute(stmt)).scalars())
            voters = await self._voters(session, [r.id for r in rows])
        return [_to_issue(r, voters.get(r.id)) for r in rows]

    async def get_issue(self, issue_id: str) -> Issue:
        async with self._db.session() as session:
            row = await session.get(IssueRow, issue_id)
            if row is None:
                raise NotFoundError("Issue not found")
            voters = await self._voters(session, [issue_id])
        return _to_issue(row, voters.get(issue_id))

    async def list_comments(self, issue_id: str) -> list[Comment]:
        """Comments on an issue, newest first."""
        stmt = (
            select(CommentRow)
            .where(CommentRow.issue_id == issue_id)
            .order_by(CommentRow.created_at.desc(), CommentRow.id.asc())
        )
        async with self._db.session() as session:
            return [_to_comment(r) for r in (await session.execute(stmt)).scalars()]

    async def statistics(self, user_id: str | None = None) -> IssueStatistics:
        """Issue counts grouped by status and by category."""
        by_status_stmt = _filtered(
            select(IssueRow.status, func.count()).group_by(IssueRow.status), None, None, user_id,
        )
        by_category_stmt = _filtered(
            select(IssueRow.category, func.count()).group_by(IssueRow.category), None, None, user_id,
        )
        async with self._db.session() as session:
            status_counts = {s: n for s, n in (await session.execute(by_status_stmt)).all()}
            category_counts = {c: n for c, n in (await session.execute(by_category_stmt)).all()}

        by_status = {s: status_counts.get(s, 0) for s in ISSUE_STATUSES}
        return IssueStatistics(
            total=sum(status_counts.values()),
            by_status=by_status,
            by_category=category_counts,
        )

    async def _voters(self, session, issue_ids: list[str]) -> dict[str, list[str]]:
        if not issue_ids:
            return {}
        stmt = (
            select(IssueUpvoteRow.issue_id, IssueUpvoteRow.user_id)
            .where(IssueUpvoteRow.issue_id.in_(issue_ids))
            .order_by(IssueUpvoteRow.created_at.asc(), IssueUpvoteRow.user_id.asc())
        )
        voters: dict[str, list[str]] = {}
        for issue_id, user_id in (await session.execute(stmt)).all():
            voters.setdefault(issue_id, []).append(user_id)
        return voters

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_issue(self, new: NewIssue) -> Issue:
        now = now_ms()
        row = IssueRow(
            id=_new_id(),
            user_id=new.user_id,
            title=new.title,
            description=new.description,
            category=new.category,
            status="open",
            latitude=new.location.latitude,
            longitude=new.location.longitude,
            address=new.location.address,
            upload_urls=list(new.upload_urls),
            upvotes=0,
            resolution_upload_urls=[],
            created_at=now,
            updated_at=now,
        )
        async with self._db.session() as session:
            session.add(row)
            await session.commit()
        logger.info("Created issue %s", row.id, extra={"issue_id": row.id, "user_id": new.user_id})
        return _to_issue(row)

    async def add_comment(
        self,
        issue_id: str,
        actor: Actor,
        text: str,
        upload_urls: list[str] | None = None,
    ) -> Comment:
        async with self._db.session() as session:
            async with session.begin():
                if await session.get(IssueRow, issue_id) is None:
                    raise NotFoundError("Issue not found")
                row = CommentRow(
                    id=_new_id(),
                    issue_id=issue_id,
                    user_id=actor.user_id,
                    comment=text,
                    upload_urls=list(upload_urls or []),
                    is_admin=actor.is_admin,
                    created_at=now_ms(),
                )
                session.add(row)
        return _to_comment(row)

    async def update_status(
        self,
        issue_id: str,
        status: str,
        actor: Actor,
        resolution_message: str | None = None,
        resolution_upload_urls: list[str] | None = None,
    ) -> Issue:
        """Change an issue's status.

        A transition to ``resolved`` stamps resolved_at and stores the
        resolution details; a resolution message is also posted as a
        comment carrying the actor's admin flag.
        """
        if status not in ISSUE_STATUSES:
            raise ValidationError(f"Invalid status: {status!r}")

        async with self._db.session() as session:
            async with session.begin():
                row = await self._locked(session, issue_id)
                _check_owner_or_admin(row, actor, "update")

                now = max(now_ms(), row.created_at)
                row.status = status
                row.updated_at = now

                if status == "resolved":
                    row.resolved_at = now
                    if resolution_message:
                        row.resolution_message = resolution_message
                    if resolution_upload_urls is not None:
                        row.resolution_upload_urls = list(resolution_upload_urls)
                    if resolution_message:
                        session.add(CommentRow(
                            id=_new_id(),
                            issue_id=issue_id,
                            user_id=actor.user_id,
                            comment=resolution_message,
                            upload_urls=list(resolution_upload_urls or []),
                            is_admin=actor.is_admin,
                            created_at=now,
                        ))
                voters = await self._voters(session, [issue_id])

        logger.info(
            "Issue %s status -> %s", issue_id, status,
            extra={"issue_id": issue_id, "user_id": actor.user_id},
        )
        return _to_issue(row, voters.get(issue_id))

    async def delete_issue(self, issue_id: str, actor: Actor) -> None:
        """Delete an issue with its comments and votes, all or nothing."""
        async with self._db.session() as session:
            async with session.begin():
                row = await self._locked(session, issue_id)
                _check_owner_or_admin(row, actor, "delete")
                await session.execute(delete(CommentRow).where(CommentRow.issue_id == issue_id))
                await session.execute(delete(IssueUpvoteRow).where(IssueUpvoteRow.issue_id == issue_id))
                await session.execute(delete(IssueRow).where(IssueRow.id == issue_id))
        logger.info("Deleted issue %s", issue_id, extra={"issue_id": issue_id, "user_id": actor.user_id})

    async def toggle_upvote(self, issue_id: str, user_id: str) -> Issue:
        """Add the user's vote, or remove it if already present."""
        async with self._db.session() as session:
            async with session.begin():
                found = await session.execute(
                    select(IssueRow.id).where(IssueRow.id == issue_id).with_for_update()
                )
                if found.scalar_one_or_none() is None:
                    raise NotFoundError("Issue not found")

                now = now_ms()
                removed = await session.execute(
                    delete(IssueUpvoteRow).where(
                        IssueUpvoteRow.issue_id == issue_id,
                        IssueUpvoteRow.user_id == user_id,
                    )
                )
                if removed.rowcount:
                    new_count = case((IssueRow.upvotes > 0, IssueRow.upvotes - 1), else_=0)
                else:
                    session.add(IssueUpvoteRow(issue_id=issue_id, user_id=user_id, created_at=now))
                    await session.flush()
                    new_count = IssueRow.upvotes + 1

                await session.execute(
                    update(IssueRow)
                    .where(IssueRow.id == issue_id)
                    .values(upvotes=new_count, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
        return await self.get_issue(issue_id)

    async def _locked(self, session, issue_id: str) -> IssueRow:
        result = await session.execute(select(IssueRow).where(IssueRow.id == issue_id).with_for_update())
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError("Issue not found")
        return row

"""Tests for issue mutations: create, comment, status, delete, upvote toggle."""

import asyncio

import pytest

from civictrack.core.errors import NotFoundError, UnauthorizedError, ValidationError
from civictrack.core.types import Actor, Location, NewIssue
from civictrack.storage.db import Database
from civictrack.storage.issues import IssueStore

OWNER = Actor(user_id="owner")
STRANGER = Actor(user_id="stranger")
ADMIN = Actor(user_id="admin", is_admin=True)


def _streetlight() -> NewIssue:
    return NewIssue(
        user_id=OWNER.user_id,
        title="Broken streetlight",
        description="The light at the corner has been out for a week.",
        category="lighting",
        location=Location(latitude=12.97, longitude=77.59, address="MG Road"),
        upload_urls=["https://example.com/photo.jpg"],
    )


@pytest.fixture
def store(db):
    return IssueStore(db)


@pytest.fixture
async def issue(store):
    return await store.create_issue(_streetlight())


class TestCreateAndGet:
    async def test_create_defaults(self, issue):
        assert issue.status == "open"
        assert issue.upvotes == 0
        assert issue.upvoted_by == []
        assert issue.resolved_at is None
        assert issue.created_at == issue.updated_at

    async def test_get_round_trip(self, store, issue):
        loaded = await store.get_issue(issue.id)
        assert loaded.title == "Broken streetlight"
        assert loaded.location.address == "MG Road"
        assert loaded.upload_urls == ["https://example.com/photo.jpg"]

    async def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.get_issue("nope")


class TestComments:
    async def test_add_and_list_newest_first(self, store, issue):
        first = await store.add_comment(issue.id, STRANGER, "Same here")
        await asyncio.sleep(0.002)
        second = await store.add_comment(issue.id, ADMIN, "Crew dispatched")

        comments = await store.list_comments(issue.id)
        assert [c.id for c in comments] == [second.id, first.id]
        assert comments[0].is_admin is True
        assert comments[1].is_admin is False

    async def test_comment_on_missing_issue(self, store):
        with pytest.raises(NotFoundError):
            await store.add_comment("nope", STRANGER, "hello")


class TestUpdateStatus:
    async def test_owner_can_update(self, store, issue):
        updated = await store.update_status(issue.id, "in_progress", OWNER)
        assert updated.status == "in_progress"
        assert updated.updated_at >= issue.updated_at

    async def test_stranger_rejected(self, store, issue):
        with pytest.raises(UnauthorizedError):
            await store.update_status(issue.id, "closed", STRANGER)
        assert (await store.get_issue(issue.id)).status == "open"

    async def test_admin_can_update_any(self, store, issue):
        updated = await store.update_status(issue.id, "closed", ADMIN)
        assert updated.status == "closed"

    async def test_invalid_status(self, store, issue):
        with pytest.raises(ValidationError):
            await store.update_status(issue.id, "archived", ADMIN)

    async def test_missing_issue(self, store):
        with pytest.raises(NotFoundError):
            await store.update_status("nope", "closed", ADMIN)

    async def test_resolve_with_message_adds_comment(self, store, issue):
        resolved = await store.update_status(
            issue.id, "resolved", ADMIN,
            resolution_message="Replaced the bulb",
            resolution_upload_urls=["https://example.com/after.jpg"],
        )
        assert resolved.resolved_at is not None
        assert resolved.resolution_message == "Replaced the bulb"
        assert resolved.resolution_upload_urls == ["https://example.com/after.jpg"]

        comments = await store.list_comments(issue.id)
        assert len(comments) == 1
        assert comments[0].comment == "Replaced the bulb"
        assert comments[0].is_admin is True
        assert comments[0].upload_urls == ["https://example.com/after.jpg"]

    async def test_resolve_without_message_adds_no_comment(self, store, issue):
        resolved = await store.update_status(issue.id, "resolved", OWNER)
        assert resolved.resolved_at is not None
        assert await store.list_comments(issue.id) == []


class TestDelete:
    async def test_cascade(self, store, issue):
        await store.add_comment(issue.id, STRANGER, "Please fix")
        await store.toggle_upvote(issue.id, STRANGER.user_id)

        await store.delete_issue(issue.id, OWNER)

        with pytest.raises(NotFoundError):
            await store.get_issue(issue.id)
        assert await store.list_comments(issue.id) == []

    async def test_stranger_cannot_delete(self, store, issue):
        with pytest.raises(UnauthorizedError):
            await store.delete_issue(issue.id, STRANGER)
        assert (await store.get_issue(issue.id)).id == issue.id

    async def test_admin_can_delete(self, store, issue):
        await store.delete_issue(issue.id, ADMIN)
        with pytest.raises(NotFoundError):
            await store.get_issue(issue.id)


class TestUpvoteToggle:
    async def test_first_press_adds(self, store, issue):
        voted = await store.toggle_upvote(issue.id, "u9")
        assert voted.upvotes == 1
        assert voted.upvoted_by == ["u9"]

    async def test_second_press_reverts(self, store, issue):
        await store.toggle_upvote(issue.id, "u9")
        reverted = await store.toggle_upvote(issue.id, "u9")
        assert reverted.upvotes == 0
        assert reverted.upvoted_by == []

    async def test_count_tracks_voters(self, store, issue):
        for uid in ("a", "b", "c"):
            await store.toggle_upvote(issue.id, uid)
        await store.toggle_upvote(issue.id, "b")

        loaded = await store.get_issue(issue.id)
        assert loaded.upvotes == 2
        assert sorted(loaded.upvoted_by) == ["a", "c"]

    async def test_missing_issue(self, store):
        with pytest.raises(NotFoundError):
            await store.toggle_upvote("nope", "u1")

    async def test_concurrent_voters_all_counted(self, tmp_path):
        db = Database(f"sqlite+aiosqlite:///{tmp_path / 'votes.db'}")
        await db.init()
        try:
            store = IssueStore(db)
            issue = await store.create_issue(_streetlight())
            voters = [f"v{i}" for i in range(6)]
            await asyncio.gather(*(store.toggle_upvote(issue.id, v) for v in voters))
            loaded = await store.get_issue(issue.id)
        finally:
            await db.dispose()

        assert loaded.upvotes == len(loaded.upvoted_by) == 6
        assert sorted(loaded.upvoted_by) == voters


class TestStatistics:
    async def test_counts(self, store, seed_issue):
        await seed_issue(status="open", category="roads")
        await seed_issue(status="resolved", category="roads", user_id="u2")
        await seed_issue(status="resolved", category="water", user_id="u2")

        stats = await store.statistics()
        assert stats.total == 3
        assert stats.by_status == {"open": 1, "in_progress": 0, "resolved": 2, "closed": 0}
        assert stats.by_category == {"roads": 2, "water": 1}

    async def test_user_scope(self, store, seed_issue):
        await seed_issue(user_id="u1")
        await seed_issue(user_id="u2", status="closed")
        stats = await store.statistics(user_id="u2")
        assert stats.total == 1
        assert stats.by_status["closed"] == 1

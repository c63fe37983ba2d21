"""Tests for the agent tool registry."""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from civictrack.core.types import ConversationContext
from civictrack.pipeline.tools import FORM_TRIGGER_MARKER, ToolContext, ToolRegistry
from civictrack.retrieval.query import QueryEngine
from civictrack.storage.issues import IssueStore
from civictrack.storage.users import UserDirectory


@pytest.fixture
def registry(db):
    issues = IssueStore(db)
    return ToolRegistry(QueryEngine(issues, UserDirectory(db)), issues)


@pytest.fixture
def ctx():
    return ToolContext(user_id="u1", context=ConversationContext())


class TestSchemas:
    def test_seven_tools(self, registry):
        names = [s["function"]["name"] for s in registry.schemas()]
        assert names == [
            "get_user_issues",
            "get_all_issues",
            "search_nearby_issues",
            "get_popular_issues",
            "get_issue_statistics",
            "get_issue_details",
            "trigger_issue_creation_form",
        ]

    def test_openai_function_format(self, registry):
        schema = registry.schemas()[2]
        assert schema["type"] == "function"
        params = schema["function"]["parameters"]
        assert params["type"] == "object"
        assert set(params["required"]) == {"latitude", "longitude"}
        assert "radiusKm" in params["properties"]


class TestValidation:
    async def test_unknown_tool(self, registry, ctx):
        assert await registry.execute("drop_tables", "{}", ctx) == "Unknown tool: drop_tables"

    async def test_malformed_json(self, registry, ctx):
        result = await registry.execute("get_issue_details", "{not json", ctx)
        assert result.startswith("Invalid arguments for get_issue_details")

    async def test_missing_required(self, registry, ctx):
        result = await registry.execute("search_nearby_issues", {"latitude": 10.0}, ctx)
        assert "longitude" in result
        assert result.startswith("Invalid arguments")

    async def test_out_of_range_coordinates(self, registry, ctx):
        result = await registry.execute("search_nearby_issues", {"latitude": 100, "longitude": 0}, ctx)
        assert result.startswith("Invalid arguments")

    async def test_bad_enum(self, registry, ctx):
        result = await registry.execute("get_popular_issues", {"status": "pending"}, ctx)
        assert result.startswith("Invalid arguments")

    async def test_extra_field_rejected(self, registry, ctx):
        result = await registry.execute("get_issue_details", {"issueId": "x", "drop": True}, ctx)
        assert result.startswith("Invalid arguments")

    async def test_empty_argument_string(self, registry, ctx):
        assert await registry.execute("get_popular_issues", "", ctx) == "No popular issues found."


class TestQueryTools:
    async def test_user_issues_empty(self, registry, ctx):
        result = await registry.execute("get_user_issues", {"userId": "u1"}, ctx)
        assert result == "The user hasn't reported any issues yet."

    async def test_user_issues(self, registry, ctx, seed_issue):
        await seed_issue(user_id="u1", title="Leaking hydrant")
        await seed_issue(user_id="u2")
        data = json.loads(await registry.execute("get_user_issues", '{"userId": "u1"}', ctx))
        assert data["total"] == 1
        assert data["issues"][0]["title"] == "Leaking hydrant"

    async def test_user_issues_defaults_to_asking_user(self, registry, ctx, seed_issue):
        await seed_issue(user_id="u1", title="Mine")
        await seed_issue(user_id="u2", title="Theirs")
        data = json.loads(await registry.execute("get_user_issues", {}, ctx))
        assert [i["title"] for i in data["issues"]] == ["Mine"]

        other = json.loads(await registry.execute("get_user_issues", {"userId": "u2"}, ctx))
        assert [i["title"] for i in other["issues"]] == ["Theirs"]

    async def test_user_issues_empty_id_rejected(self, registry, ctx):
        result = await registry.execute("get_user_issues", {"userId": ""}, ctx)
        assert result.startswith("Invalid arguments")

    async def test_execution_is_timed(self, registry, ctx, caplog):
        caplog.set_level(logging.INFO, logger="civictrack")
        await registry.execute("get_popular_issues", {}, ctx)
        timed = [r for r in caplog.records if getattr(r, "duration_ms", None) is not None]
        assert len(timed) == 1
        assert timed[0].tool == "get_popular_issues"
        assert timed[0].outcome == "ok"
        assert timed[0].getMessage() == "tool get_popular_issues ok"

    async def test_all_issues_empty(self, registry, ctx):
        assert await registry.execute("get_all_issues", {}, ctx) == "No issues found matching the criteria."

    async def test_all_issues_has_reporter(self, db, registry, ctx, seed_issue):
        await UserDirectory(db).upsert("u1", "Ravi")
        await seed_issue(user_id="u1")
        data = json.loads(await registry.execute("get_all_issues", {"limit": 5}, ctx))
        assert data["total"] == 1
        assert data["totalPages"] == 1
        assert data["issues"][0]["reportedBy"] == "Ravi"

    async def test_nearby(self, registry, ctx, seed_issue):
        await seed_issue(latitude=10.01, longitude=10.01)
        data = json.loads(await registry.execute(
            "search_nearby_issues", {"latitude": 10.0, "longitude": 10.0, "radiusKm": 5}, ctx,
        ))
        assert data["searchRadius"] == "5km"
        assert data["issues"][0]["distance"].endswith("km")
        assert 1.4 < float(data["issues"][0]["distance"][:-2]) < 1.7

    async def test_nearby_default_radius_empty(self, registry, ctx, seed_issue):
        await seed_issue(latitude=11.0, longitude=10.0)
        result = await registry.execute("search_nearby_issues", {"latitude": 10.0, "longitude": 10.0}, ctx)
        assert result == "No issues found within 5km of the specified location."

    async def test_popular_top_ten(self, registry, ctx, seed_issue):
        for votes in range(12):
            await seed_issue(title=f"Issue with {votes} votes", upvotes=votes)
        data = json.loads(await registry.execute("get_popular_issues", {}, ctx))
        assert data["total"] == 10
        assert data["issues"][0]["upvotes"] == 11
        assert data["issues"][-1]["upvotes"] == 2

    async def test_statistics(self, registry, ctx, seed_issue):
        await seed_issue(status="resolved")
        await seed_issue(status="open")
        await seed_issue(status="open", category="water")
        data = json.loads(await registry.execute("get_issue_statistics", {}, ctx))
        assert data["scope"] == "community"
        assert data["total"] == 3
        assert data["byStatus"]["open"] == 2
        assert data["byCategory"] == {"roads": 2, "water": 1}
        assert data["resolutionRate"] == "33.3%"

    async def test_statistics_empty(self, registry, ctx):
        data = json.loads(await registry.execute("get_issue_statistics", {"userId": "u1"}, ctx))
        assert data["scope"] == "user"
        assert data["resolutionRate"] == "0%"

    async def test_details(self, registry, ctx, seed_issue):
        issue_id = await seed_issue(title="Fallen tree")
        data = json.loads(await registry.execute("get_issue_details", {"issueId": issue_id}, ctx))
        assert data["id"] == issue_id
        assert data["title"] == "Fallen tree"
        assert data["location"]["latitude"] == 10.0
        assert data["resolvedAt"] is None

    async def test_details_missing(self, registry, ctx):
        assert await registry.execute("get_issue_details", {"issueId": "nope"}, ctx) == "Issue not found."


class TestFailures:
    async def test_query_failure_becomes_message(self, db, ctx):
        engine = QueryEngine(IssueStore(db), UserDirectory(db))
        engine.query_issues = AsyncMock(side_effect=RuntimeError("db gone"))
        registry = ToolRegistry(engine, IssueStore(db))

        result = await registry.execute("get_all_issues", {}, ctx)
        assert result == "Error fetching all issues: db gone"

    async def test_statistics_failure(self, db, ctx):
        issues = IssueStore(db)
        issues.statistics = AsyncMock(side_effect=RuntimeError("timeout"))
        registry = ToolRegistry(QueryEngine(issues, UserDirectory(db)), issues)

        result = await registry.execute("get_issue_statistics", {}, ctx)
        assert result == "Error fetching issue statistics: timeout"


class TestFormTrigger:
    async def test_sets_context_and_returns_marker(self, registry, ctx):
        result = await registry.execute("trigger_issue_creation_form", "{}", ctx)
        assert result == FORM_TRIGGER_MARKER
        assert ctx.context.creating_issue is True
        assert ctx.context.to_dict() == {"creatingIssue": True}

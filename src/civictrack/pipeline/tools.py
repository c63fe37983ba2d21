"""Tool registry for the chat agent.

Six read-only tools query issues through the QueryEngine / IssueStore and
return JSON summaries; trigger_issue_creation_form is the one tool with a
side effect: it flags the conversation context and returns a marker the
orchestrator looks for.

Arguments are validated against a pydantic model per tool before any
handler runs; a malformed call gets an error string back, never a query.
Read-only tools catch their own failures so the model always receives a
string.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ArgsValidationError

from civictrack.core.errors import NotFoundError
from civictrack.core.types import ConversationContext, Issue, IssueListing, IssueQuery
from civictrack.observability.logging import log_duration
from civictrack.observability.tracing import start_span
from civictrack.retrieval.query import QueryEngine
from civictrack.storage.issues import IssueStore

logger = logging.getLogger(__name__)

TRIGGER_TOOL_NAME = "trigger_issue_creation_form"
FORM_TRIGGER_MARKER = "FORM_TRIGGER_MARKER"

USER_ISSUES_LIMIT = 100
POPULAR_ISSUES_LIMIT = 10

Status = Literal["open", "in_progress", "resolved", "closed"]


@dataclass
class ToolContext:
    """Per-request state handed to every tool invocation."""

    user_id: str
    context: ConversationContext


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------

class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GetUserIssuesArgs(_ToolArgs):
    userId: str | None = Field(
        None, min_length=1, description="The ID of the user whose issues to retrieve; defaults to the asking user",
    )
    status: Status | None = Field(None, description="Filter by issue status")


class GetAllIssuesArgs(_ToolArgs):
    status: Status | None = Field(None, description="Filter by issue status")
    category: str | None = Field(None, description="Filter by issue category")
    page: int = Field(1, ge=1, description="Page number for pagination")
    limit: int = Field(20, ge=1, le=100, description="Number of issues per page")
    sortBy: Literal["createdAt", "upvotes"] = Field("createdAt", description="Field to sort by")
    sortOrder: Literal["asc", "desc"] = Field("desc", description="Sort order")


class SearchNearbyIssuesArgs(_ToolArgs):
    latitude: float = Field(..., ge=-90, le=90, description="Latitude of the location")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude of the location")
    radiusKm: float = Field(5, gt=0, description="Search radius in kilometers (default: 5km)")
    status: Status | None = Field(None, description="Filter by issue status")
    limit: int = Field(20, ge=1, le=100, description="Number of issues to return")


class GetPopularIssuesArgs(_ToolArgs):
    status: Status | None = Field(None, description="Filter by issue status")


class GetIssueStatisticsArgs(_ToolArgs):
    userId: str | None = Field(None, description="If provided, stats for this user's issues only")


class GetIssueDetailsArgs(_ToolArgs):
    issueId: str = Field(..., min_length=1, description="The ID of the issue to retrieve")


class TriggerIssueCreationArgs(_ToolArgs):
    pass


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

def _date(ms: int | None) -> str | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).date().isoformat()


def _timestamp(ms: int | None) -> str | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def _summary(issue: Issue) -> dict:
    return {
        "id": issue.id,
        "title": issue.title,
        "category": issue.category,
        "status": issue.status,
        "upvotes": issue.upvotes,
        "createdAt": _date(issue.created_at),
        "location": issue.location.address,
    }


def _listing_summary(listing: IssueListing) -> dict:
    return {**_summary(listing.issue), "reportedBy": listing.reported_by_name}


def _dumps(data: dict) -> str:
    return json.dumps(data, indent=2)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

Handler = Callable[[BaseModel, ToolContext], Awaitable[str]]


@dataclass
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Handler

    def schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }


class ToolRegistry:
    def __init__(self, engine: QueryEngine, issues: IssueStore):
        self._engine = engine
        self._issues = issues
        specs = [
            ToolSpec(
                "get_user_issues",
                "Retrieve issues reported by a specific user. Use when the user asks about "
                "'my issues', 'my complaints' or 'my reports'. Can filter by status.",
                GetUserIssuesArgs, self._get_user_issues,
            ),
            ToolSpec(
                "get_all_issues",
                "Retrieve community issues with filters, pagination and sorting "
                "(createdAt, upvotes). Useful for dashboard-like views.",
                GetAllIssuesArgs, self._get_all_issues,
            ),
            ToolSpec(
                "search_nearby_issues",
                "Search for issues near a location. Use for 'issues near me', 'nearby problems' "
                "or 'local issues'. Requires latitude and longitude.",
                SearchNearbyIssuesArgs, self._search_nearby_issues,
            ),
            ToolSpec(
                "get_popular_issues",
                "Get the 10 most upvoted issues. Use for 'popular', 'trending', 'most upvoted' "
                "or 'top' issues.",
                GetPopularIssuesArgs, self._get_popular_issues,
            ),
            ToolSpec(
                "get_issue_statistics",
                "Get issue counts by status and category plus the resolution rate. "
                "With userId, only that user's issues are counted.",
                GetIssueStatisticsArgs, self._get_issue_statistics,
            ),
            ToolSpec(
                "get_issue_details",
                "Get full details of one issue by its ID.",
                GetIssueDetailsArgs, self._get_issue_details,
            ),
            ToolSpec(
                TRIGGER_TOOL_NAME,
                "Use ONLY when the user wants to report, create or submit a NEW civic issue "
                "(e.g. 'report a pothole', 'create an issue', 'I want to report'). "
                "Opens the issue creation form.",
                TriggerIssueCreationArgs, self._trigger_issue_creation_form,
            ),
        ]
        self._tools: dict[str, ToolSpec] = {s.name: s for s in specs}

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict]:
        """Tool definitions in OpenAI function-calling format."""
        return [spec.schema() for spec in self._tools.values()]

    async def execute(self, name: str, raw_args: str | dict | None, ctx: ToolContext) -> str:
        """Validate arguments and run a tool. Always returns a string for valid tools."""
        spec = self._tools.get(name)
        if spec is None:
            return f"Unknown tool: {name}"

        if isinstance(raw_args, str):
            try:
                data = json.loads(raw_args) if raw_args.strip() else {}
            except json.JSONDecodeError:
                return f"Invalid arguments for {name}: arguments are not valid JSON"
        else:
            data = raw_args or {}

        try:
            args = spec.args_model.model_validate(data)
        except ArgsValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
            )
            logger.info("Rejected %s call: %s", name, problems, extra={"tool": name})
            return f"Invalid arguments for {name}: {problems}"

        with (
            start_span(name=f"tool_{name}", span_type="TOOL") as span,
            log_duration(logger, f"tool {name}", tool=name),
        ):
            span.set_inputs(args.model_dump())
            result = await spec.handler(args, ctx)
            span.set_outputs({"result_chars": len(result)})
        return result

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _get_user_issues(self, args: GetUserIssuesArgs, ctx: ToolContext) -> str:
        try:
            page = await self._engine.query_issues(
                IssueQuery(user_id=args.userId or ctx.user_id, status=args.status, limit=USER_ISSUES_LIMIT)
            )
            if not page.records:
                return "The user hasn't reported any issues yet."
            return _dumps({"total": page.total, "issues": [_summary(r.issue) for r in page.records]})
        except Exception as e:
            logger.warning("get_user_issues failed: %s", e, extra={"tool": "get_user_issues"})
            return f"Error fetching user issues: {e}"

    async def _get_all_issues(self, args: GetAllIssuesArgs, ctx: ToolContext) -> str:
        try:
            page = await self._engine.query_issues(IssueQuery(
                status=args.status,
                category=args.category,
                page=args.page,
                limit=args.limit,
                sort_by=args.sortBy,
                sort_order=args.sortOrder,
            ))
            if not page.records:
                return "No issues found matching the criteria."
            return _dumps({
                "total": page.total,
                "totalPages": page.total_pages,
                "issues": [_listing_summary(r) for r in page.records],
            })
        except Exception as e:
            logger.warning("get_all_issues failed: %s", e, extra={"tool": "get_all_issues"})
            return f"Error fetching all issues: {e}"

    async def _search_nearby_issues(self, args: SearchNearbyIssuesArgs, ctx: ToolContext) -> str:
        try:
            page = await self._engine.query_issues(IssueQuery(
                latitude=args.latitude,
                longitude=args.longitude,
                radius_km=args.radiusKm,
                status=args.status,
                limit=args.limit,
            ))
            if not page.records:
                return f"No issues found within {args.radiusKm:g}km of the specified location."
            issues = []
            for r in page.records:
                entry = _listing_summary(r)
                entry["distance"] = f"{r.distance_km:.2f}km" if r.distance_km is not None else "N/A"
                issues.append(entry)
            return _dumps({"searchRadius": f"{args.radiusKm:g}km", "total": page.total, "issues": issues})
        except Exception as e:
            logger.warning("search_nearby_issues failed: %s", e, extra={"tool": "search_nearby_issues"})
            return f"Error searching nearby issues: {e}"

    async def _get_popular_issues(self, args: GetPopularIssuesArgs, ctx: ToolContext) -> str:
        try:
            page = await self._engine.query_issues(IssueQuery(
                status=args.status,
                sort_by="upvotes",
                sort_order="desc",
                page=1,
                limit=POPULAR_ISSUES_LIMIT,
            ))
            if not page.records:
                return "No popular issues found."
            return _dumps({
                "total": len(page.records),
                "issues": [_summary(r.issue) for r in page.records],
            })
        except Exception as e:
            logger.warning("get_popular_issues failed: %s", e, extra={"tool": "get_popular_issues"})
            return f"Error fetching popular issues: {e}"

    async def _get_issue_statistics(self, args: GetIssueStatisticsArgs, ctx: ToolContext) -> str:
        try:
            stats = await self._issues.statistics(user_id=args.userId)
            resolved = stats.by_status.get("resolved", 0)
            rate = f"{resolved / stats.total * 100:.1f}%" if stats.total > 0 else "0%"
            return _dumps({
                "scope": "user" if args.userId else "community",
                "total": stats.total,
                "byStatus": stats.by_status,
                "byCategory": stats.by_category,
                "resolutionRate": rate,
            })
        except Exception as e:
            logger.warning("get_issue_statistics failed: %s", e, extra={"tool": "get_issue_statistics"})
            return f"Error fetching issue statistics: {e}"

    async def _get_issue_details(self, args: GetIssueDetailsArgs, ctx: ToolContext) -> str:
        try:
            issue = await self._issues.get_issue(args.issueId)
        except NotFoundError:
            return "Issue not found."
        except Exception as e:
            logger.warning("get_issue_details failed: %s", e, extra={"tool": "get_issue_details"})
            return f"Error fetching issue details: {e}"

        return _dumps({
            "id": issue.id,
            "title": issue.title,
            "description": issue.description,
            "category": issue.category,
            "status": issue.status,
            "upvotes": issue.upvotes,
            "location": {
                "latitude": issue.location.latitude,
                "longitude": issue.location.longitude,
                "address": issue.location.address,
            },
            "uploadUrls": issue.upload_urls,
            "createdAt": _timestamp(issue.created_at),
            "updatedAt": _timestamp(issue.updated_at),
            "resolvedAt": _timestamp(issue.resolved_at),
            "resolutionMessage": issue.resolution_message,
        })

    async def _trigger_issue_creation_form(self, args: TriggerIssueCreationArgs, ctx: ToolContext) -> str:
        ctx.context.creating_issue = True
        logger.info("Issue creation form requested", extra={"user_id": ctx.user_id, "tool": TRIGGER_TOOL_NAME})
        return FORM_TRIGGER_MARKER

"""Domain types for the civictrack issue tracker and chat assistant.

All shared dataclasses live here to prevent circular imports between the
storage, retrieval and pipeline layers. Timestamps are epoch milliseconds
(UTC), matching the persisted layout.
"""

import time
from dataclasses import dataclass, field

ISSUE_STATUSES = ("open", "in_progress", "resolved", "closed")
SORT_FIELDS = ("createdAt", "upvotes")
SORT_ORDERS = ("asc", "desc")
MESSAGE_ROLES = ("user", "assistant", "system")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
DEFAULT_RADIUS_KM = 100.0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a mutation, as resolved by the gateway."""

    user_id: str
    is_admin: bool = False


# ---------------------------------------------------------------------------
# Issues and comments
# ---------------------------------------------------------------------------

@dataclass
class Location:
    latitude: float
    longitude: float
    address: str


@dataclass
class Issue:
    """A civic problem report.

    ``upvoted_by`` holds each voter id at most once; ``upvotes`` is kept in
    step with it by the store.
    """

    id: str
    user_id: str
    title: str
    description: str
    category: str
    location: Location
    status: str = "open"
    upload_urls: list[str] = field(default_factory=list)
    upvotes: int = 0
    upvoted_by: list[str] = field(default_factory=list)
    resolution_message: str | None = None
    resolution_upload_urls: list[str] = field(default_factory=list)
    resolved_at: int | None = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class NewIssue:
    """Fields supplied by a report submission."""

    user_id: str
    title: str
    description: str
    category: str
    location: Location
    upload_urls: list[str] = field(default_factory=list)


@dataclass
class Comment:
    id: str
    issue_id: str
    user_id: str
    comment: str
    upload_urls: list[str] = field(default_factory=list)
    is_admin: bool = False
    created_at: int = 0
    user_name: str | None = None


# ---------------------------------------------------------------------------
# Query engine
# ---------------------------------------------------------------------------

@dataclass
class IssueQuery:
    """Filters, geo reference point, pagination and sort for an issue listing.

    Values are taken as given; the query engine clamps and defaults them.
    """

    status: str | None = None
    category: str | None = None
    user_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    radius_km: float | None = None
    page: int | None = DEFAULT_PAGE
    limit: int | None = DEFAULT_LIMIT
    sort_by: str | None = "createdAt"
    sort_order: str | None = "desc"

    @property
    def has_reference_point(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class IssueListing:
    """An issue annotated for presentation.

    ``distance_km`` is only set when the listing came from a geo query.
    """

    issue: Issue
    reported_by_name: str = "User"
    distance_km: float | None = None


@dataclass
class IssuePage:
    records: list[IssueListing]
    total: int
    page: int
    total_pages: int


@dataclass
class IssueStatistics:
    total: int
    by_status: dict[str, int]
    by_category: dict[str, int]


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@dataclass
class Message:
    role: str
    content: str
    timestamp: int = field(default_factory=now_ms)


@dataclass
class ConversationContext:
    """Cross-turn intent tracked for a conversation.

    Closed set of known fields. Serialized with the camelCase keys the
    model sees in the injected context line; unset fields are omitted.
    """

    creating_issue: bool = False

    def to_dict(self) -> dict:
        data: dict = {}
        if self.creating_issue:
            data["creatingIssue"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> "ConversationContext":
        data = data or {}
        return cls(creating_issue=bool(data.get("creatingIssue", False)))


@dataclass
class Conversation:
    user_id: str
    id: str | None = None
    messages: list[Message] = field(default_factory=list)
    context: ConversationContext = field(default_factory=ConversationContext)
    is_active: bool = True
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

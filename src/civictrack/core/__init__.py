"""Core domain types shared across all civictrack modules."""

from civictrack.core.types import (
    Actor,
    Comment,
    Conversation,
    ConversationContext,
    Issue,
    IssueListing,
    IssuePage,
    IssueQuery,
    IssueStatistics,
    Location,
    Message,
    NewIssue,
)

__all__ = [
    "Actor",
    "Comment",
    "Conversation",
    "ConversationContext",
    "Issue",
    "IssueListing",
    "IssuePage",
    "IssueQuery",
    "IssueStatistics",
    "Location",
    "Message",
    "NewIssue",
]

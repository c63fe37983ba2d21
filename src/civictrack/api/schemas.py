"""Pydantic request/response models for the CivicTrack API.

These are the API contract, decoupled from the internal domain dataclasses.
Field names are camelCase to match what the web client sends and reads.
"""

from typing import Literal

from pydantic import BaseModel, Field, HttpUrl

Status = Literal["open", "in_progress", "resolved", "closed"]


class ErrorResponse(BaseModel):
    detail: str
    error_type: str = "unexpected"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = Field(..., min_length=1, description="Human-readable address")


class CreateIssueRequest(BaseModel):
    """Request body for POST /api/v1/issues."""

    title: str = Field(..., min_length=5, examples=["Pothole on Main Street"])
    description: str = Field(..., min_length=10)
    category: str = Field(..., min_length=1, examples=["roads"])
    location: LocationIn
    uploadUrls: list[HttpUrl] = []


class AddCommentRequest(BaseModel):
    issueId: str = Field(..., min_length=1)
    comment: str = Field(..., min_length=1)
    uploadUrls: list[HttpUrl] = []


class UpdateStatusRequest(BaseModel):
    status: Status
    resolutionMessage: str | None = None
    resolutionUploadUrls: list[HttpUrl] | None = None


class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    latitude: float
    longitude: float
    address: str


class IssueResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    status: str
    userId: str
    location: LocationOut
    uploadUrls: list[str] = []
    upvotes: int = 0
    upvotedBy: list[str] = []
    resolutionMessage: str | None = None
    resolutionUploadUrls: list[str] = []
    resolvedAt: int | None = None
    createdAt: int
    updatedAt: int


class IssueListingResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    status: str
    userId: str
    reportedByName: str
    location: LocationOut
    uploadUrls: list[str] = []
    upvotes: int = 0
    upvotedBy: list[str] = []
    distance: float | None = None
    createdAt: int
    updatedAt: int


class IssueListResponse(BaseModel):
    count: int
    page: int
    totalPages: int
    issues: list[IssueListingResponse]


class StatusUpdateResponse(BaseModel):
    id: str
    title: str
    status: str
    updatedAt: int


class UpvoteResponse(BaseModel):
    id: str
    upvotes: int
    upvotedBy: list[str]


class DeleteResponse(BaseModel):
    message: str


class CommentResponse(BaseModel):
    id: str
    issueId: str
    userId: str
    userName: str
    comment: str
    uploadUrls: list[str] = []
    isAdmin: bool = False
    createdAt: int


class CommentListResponse(BaseModel):
    count: int
    comments: list[CommentResponse]


class ChatReplyResponse(BaseModel):
    message: str
    timestamp: int
    openForm: bool = False


class ChatMessageOut(BaseModel):
    role: str
    content: str
    timestamp: int


class ChatHistoryResponse(BaseModel):
    conversationId: str | None = None
    messages: list[ChatMessageOut]
    context: dict = {}


class ChatClearedResponse(BaseModel):
    cleared: bool

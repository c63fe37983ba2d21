"""Issue route handlers.

POST   /api/v1/issues                 — report a new issue
GET    /api/v1/issues                 — filtered / geo / paged listing
GET    /api/v1/issues/{id}            — single issue
POST   /api/v1/issues/comment         — add a comment
GET    /api/v1/issues/{id}/comments   — comments, newest first
PATCH  /api/v1/issues/{id}/status     — status change (owner or admin)
DELETE /api/v1/issues/{id}            — cascade delete (owner or admin)
POST   /api/v1/issues/{id}/upvote     — toggle the caller's vote

Domain errors (CivicTrackError) propagate to the app-level handler.
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException

from civictrack.api.deps import Services, current_actor, get_services
from civictrack.api.schemas import (
    AddCommentRequest,
    CommentListResponse,
    CommentResponse,
    CreateIssueRequest,
    DeleteResponse,
    ErrorResponse,
    IssueListingResponse,
    IssueListResponse,
    IssueResponse,
    LocationOut,
    Status,
    StatusUpdateResponse,
    UpdateStatusRequest,
    UpvoteResponse,
)
from civictrack.core.types import Actor, Issue, IssueListing, IssueQuery, Location, NewIssue
from civictrack.storage.users import PLACEHOLDER_NAME

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/issues", tags=["issues"])

_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing identity"},
    403: {"model": ErrorResponse, "description": "Not the owner or an admin"},
    404: {"model": ErrorResponse, "description": "Issue not found"},
}


def _location(loc: Location) -> LocationOut:
    return LocationOut(latitude=loc.latitude, longitude=loc.longitude, address=loc.address)


def _issue_response(issue: Issue) -> IssueResponse:
    return IssueResponse(
        id=issue.id,
        title=issue.title,
        description=issue.description,
        category=issue.category,
        status=issue.status,
        userId=issue.user_id,
        location=_location(issue.location),
        uploadUrls=issue.upload_urls,
        upvotes=issue.upvotes,
        upvotedBy=issue.upvoted_by,
        resolutionMessage=issue.resolution_message,
        resolutionUploadUrls=issue.resolution_upload_urls,
        resolvedAt=issue.resolved_at,
        createdAt=issue.created_at,
        updatedAt=issue.updated_at,
    )


def _listing_response(listing: IssueListing) -> IssueListingResponse:
    issue = listing.issue
    return IssueListingResponse(
        id=issue.id,
        title=issue.title,
        description=issue.description,
        category=issue.category,
        status=issue.status,
        userId=issue.user_id,
        reportedByName=listing.reported_by_name,
        location=_location(issue.location),
        uploadUrls=issue.upload_urls,
        upvotes=issue.upvotes,
        upvotedBy=issue.upvoted_by,
        distance=listing.distance_km,
        createdAt=issue.created_at,
        updatedAt=issue.updated_at,
    )


@router.post("", response_model=IssueResponse, status_code=201, responses=_ERRORS)
async def create_issue(
    body: CreateIssueRequest,
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    """Report a new issue as the calling user."""
    issue = await services.issues.create_issue(NewIssue(
        user_id=actor.user_id,
        title=body.title,
        description=body.description,
        category=body.category,
        location=Location(
            latitude=body.location.latitude,
            longitude=body.location.longitude,
            address=body.location.address,
        ),
        upload_urls=[str(u) for u in body.uploadUrls],
    ))
    return _issue_response(issue)


@router.get("", response_model=IssueListResponse, responses=_ERRORS)
async def list_issues(
    status: Status | None = None,
    category: str | None = None,
    userId: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    radiusKm: float | None = None,
    page: int | None = None,
    limit: int | None = None,
    sortBy: Literal["createdAt", "upvotes"] = "createdAt",
    sortOrder: Literal["asc", "desc"] = "desc",
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    """List issues. With latitude+longitude, results are nearest-first within radiusKm."""
    if (latitude is None) != (longitude is None):
        raise HTTPException(status_code=422, detail="latitude and longitude must be given together")

    result = await services.queries.query_issues(IssueQuery(
        status=status,
        category=category,
        user_id=userId,
        latitude=latitude,
        longitude=longitude,
        radius_km=radiusKm,
        page=page,
        limit=limit,
        sort_by=sortBy,
        sort_order=sortOrder,
    ))
    return IssueListResponse(
        count=result.total,
        page=result.page,
        totalPages=result.total_pages,
        issues=[_listing_response(r) for r in result.records],
    )


@router.post("/comment", response_model=CommentResponse, status_code=201, responses=_ERRORS)
async def add_comment(
    body: AddCommentRequest,
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    comment = await services.issues.add_comment(
        body.issueId, actor, body.comment, [str(u) for u in body.uploadUrls],
    )
    name = await services.users.get_name(actor.user_id)
    return CommentResponse(
        id=comment.id,
        issueId=comment.issue_id,
        userId=comment.user_id,
        userName=name or PLACEHOLDER_NAME,
        comment=comment.comment,
        uploadUrls=comment.upload_urls,
        isAdmin=comment.is_admin,
        createdAt=comment.created_at,
    )


@router.get("/{issue_id}", response_model=IssueResponse, responses=_ERRORS)
async def get_issue(
    issue_id: str,
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    return _issue_response(await services.issues.get_issue(issue_id))


@router.get("/{issue_id}/comments", response_model=CommentListResponse, responses=_ERRORS)
async def list_comments(
    issue_id: str,
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    await services.issues.get_issue(issue_id)
    comments = await services.issues.list_comments(issue_id)
    names = await services.users.display_names({c.user_id for c in comments})
    return CommentListResponse(
        count=len(comments),
        comments=[
            CommentResponse(
                id=c.id,
                issueId=c.issue_id,
                userId=c.user_id,
                userName=names.get(c.user_id, PLACEHOLDER_NAME),
                comment=c.comment,
                uploadUrls=c.upload_urls,
                isAdmin=c.is_admin,
                createdAt=c.created_at,
            )
            for c in comments
        ],
    )


@router.patch("/{issue_id}/status", response_model=StatusUpdateResponse, responses=_ERRORS)
async def update_status(
    issue_id: str,
    body: UpdateStatusRequest,
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    resolution_urls = [str(u) for u in body.resolutionUploadUrls] if body.resolutionUploadUrls is not None else None
    issue = await services.issues.update_status(
        issue_id,
        body.status,
        actor,
        resolution_message=body.resolutionMessage,
        resolution_upload_urls=resolution_urls,
    )
    return StatusUpdateResponse(id=issue.id, title=issue.title, status=issue.status, updatedAt=issue.updated_at)


@router.delete("/{issue_id}", response_model=DeleteResponse, responses=_ERRORS)
async def delete_issue(
    issue_id: str,
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    await services.issues.delete_issue(issue_id, actor)
    return DeleteResponse(message="Issue deleted successfully")


@router.post("/{issue_id}/upvote", response_model=UpvoteResponse, responses=_ERRORS)
async def toggle_upvote(
    issue_id: str,
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    """Toggle the caller's vote: a second press removes it."""
    issue = await services.issues.toggle_upvote(issue_id, actor.user_id)
    return UpvoteResponse(id=issue.id, upvotes=issue.upvotes, upvotedBy=issue.upvoted_by)

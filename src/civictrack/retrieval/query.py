"""Issue query engine: equality filters, sorting, pagination and geo-radius ranking.

Two branches:
- No reference point: the store sorts and pages (count + OFFSET/LIMIT).
- Reference point: the full filtered set is scanned, annotated with
  haversine distance, cut at the radius, ranked nearest-first and then
  paged against the post-radius count. Distance ranking overrides the
  requested sort key.

Inputs are clamped/defaulted rather than rejected; validation belongs
upstream. Reporter names are joined with one batched lookup per page and
degrade to a placeholder when the user directory fails.
"""

import logging
import math

from civictrack.core.geo import haversine_km
from civictrack.core.types import (
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    DEFAULT_RADIUS_KM,
    SORT_FIELDS,
    SORT_ORDERS,
    Issue,
    IssueListing,
    IssuePage,
    IssueQuery,
)
from civictrack.observability.tracing import start_span
from civictrack.storage.issues import IssueStore
from civictrack.storage.users import PLACEHOLDER_NAME, UserDirectory

logger = logging.getLogger(__name__)


def _positive_int(value, default: int) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        return default
    return value if value >= 1 else default


def normalize_query(query: IssueQuery) -> IssueQuery:
    """Return a copy of the query with pagination, sort and radius defaulted."""
    radius = query.radius_km
    if query.has_reference_point and (radius is None or radius <= 0):
        radius = DEFAULT_RADIUS_KM
    return IssueQuery(
        status=query.status or None,
        category=query.category or None,
        user_id=query.user_id or None,
        latitude=query.latitude,
        longitude=query.longitude,
        radius_km=radius if query.has_reference_point else None,
        page=_positive_int(query.page, DEFAULT_PAGE),
        limit=_positive_int(query.limit, DEFAULT_LIMIT),
        sort_by=query.sort_by if query.sort_by in SORT_FIELDS else "createdAt",
        sort_order=query.sort_order if query.sort_order in SORT_ORDERS else "desc",
    )


def rank_by_distance(
    issues: list[Issue],
    latitude: float,
    longitude: float,
    radius_km: float,
) -> list[tuple[Issue, float]]:
    """Issues within radius_km of the point, nearest first, with their distances."""
    within = []
    for issue in issues:
        distance = haversine_km(latitude, longitude, issue.location.latitude, issue.location.longitude)
        if distance <= radius_km:
            within.append((issue, distance))
    within.sort(key=lambda pair: pair[1])
    return within


class QueryEngine:
    def __init__(self, issues: IssueStore, users: UserDirectory):
        self._issues = issues
        self._users = users

    async def query_issues(self, query: IssueQuery) -> IssuePage:
        q = normalize_query(query)
        with start_span(name="query_issues", span_type="RETRIEVER") as span:
            span.set_inputs({
                "status": q.status,
                "category": q.category,
                "user_id": q.user_id,
                "geo": q.has_reference_point,
                "radius_km": q.radius_km,
                "page": q.page,
                "limit": q.limit,
                "sort": f"{q.sort_by}:{q.sort_order}",
            })

            if q.has_reference_point:
                page = await self._geo_page(q)
            else:
                page = await self._sorted_page(q)

            span.set_outputs({"total": page.total, "returned": len(page.records)})
            return page

    async def _sorted_page(self, q: IssueQuery) -> IssuePage:
        total = await self._issues.count_issues(q.status, q.category, q.user_id)
        issues = await self._issues.find_issues(
            q.status, q.category, q.user_id,
            sort_by=q.sort_by, sort_order=q.sort_order,
            offset=(q.page - 1) * q.limit, limit=q.limit,
        )
        names = await self._names_for(issues)
        records = [IssueListing(issue=i, reported_by_name=names.get(i.user_id, PLACEHOLDER_NAME)) for i in issues]
        return IssuePage(records=records, total=total, page=q.page, total_pages=math.ceil(total / q.limit))

    async def _geo_page(self, q: IssueQuery) -> IssuePage:
        candidates = await self._issues.find_issues(q.status, q.category, q.user_id)
        ranked = rank_by_distance(candidates, q.latitude, q.longitude, q.radius_km)
        total = len(ranked)

        start = (q.page - 1) * q.limit
        window = ranked[start:start + q.limit]
        names = await self._names_for([issue for issue, _ in window])
        records = [
            IssueListing(
                issue=issue,
                reported_by_name=names.get(issue.user_id, PLACEHOLDER_NAME),
                distance_km=distance,
            )
            for issue, distance in window
        ]
        return IssuePage(records=records, total=total, page=q.page, total_pages=math.ceil(total / q.limit))

    async def _names_for(self, issues: list[Issue]) -> dict[str, str]:
        if not issues:
            return {}
        try:
            return await self._users.display_names({i.user_id for i in issues})
        except Exception as e:
            logger.warning("Reporter name lookup failed, using placeholder: %s", e)
            return {}

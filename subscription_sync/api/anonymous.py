"""Anonymous visitor endpoints.

Implements:
- GET  /anonymous/views - Current anonymous post view count
- POST /anonymous/views - Record one anonymous post view
"""

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response

from subscription_sync.container import ServiceContainer
from subscription_sync.dependencies import get_container
from subscription_sync.models.api_response import AnonymousViewsResponse
from subscription_sync.services.access_gate import (
    ANONYMOUS_VIEWS_COOKIE,
    anonymous_view_allowed,
)

router = APIRouter(tags=["Anonymous"], prefix="/anonymous")


def _parse_count(raw: Optional[str]) -> int:
    try:
        return max(int(raw), 0) if raw is not None else 0
    except ValueError:
        return 0


@router.get("/views", response_model=AnonymousViewsResponse, summary="Get anonymous view count")
async def get_anonymous_views(
    anonymous_posts_viewed: Optional[str] = Cookie(None),
    container: ServiceContainer = Depends(get_container),
) -> AnonymousViewsResponse:
    """Return how many posts this visitor has viewed and whether they may keep reading."""
    limit = container.config.access.anonymous_post_limit
    count = _parse_count(anonymous_posts_viewed)
    return AnonymousViewsResponse(
        posts_viewed=count,
        limit=limit,
        allowed=anonymous_view_allowed(count, limit),
    )


@router.post("/views", response_model=AnonymousViewsResponse, summary="Record anonymous view")
async def record_anonymous_view(
    response: Response,
    anonymous_posts_viewed: Optional[str] = Cookie(None),
    container: ServiceContainer = Depends(get_container),
) -> AnonymousViewsResponse:
    """Increment the visitor's view counter cookie."""
    access = container.config.access
    count = _parse_count(anonymous_posts_viewed) + 1

    response.set_cookie(
        key=ANONYMOUS_VIEWS_COOKIE,
        value=str(count),
        max_age=access.anonymous_cookie_max_age_seconds,
        httponly=False,
        samesite="strict",
    )
    return AnonymousViewsResponse(
        posts_viewed=count,
        limit=access.anonymous_post_limit,
        allowed=anonymous_view_allowed(count, access.anonymous_post_limit),
    )

"""
Feed retrieval endpoint — GET /feed?user_id=<id>&limit=&cursor=&sort=

Thin HTTP edge over FeedOrchestrator. The orchestrator never raises; a
DegradedFeed becomes a 200 with an empty page and an `error` marker so
the client renders an empty timeline instead of an error screen.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from circlefeed.feed.orchestrator import DegradedFeed, FeedOrchestrator
from circlefeed.schemas import FeedResponse, FeedSort

logger = logging.getLogger(__name__)
router = APIRouter()


def get_orchestrator(request: Request) -> FeedOrchestrator:
    """FastAPI dependency — the orchestrator built in the app lifespan."""
    return request.app.state.orchestrator


@router.get("", response_model=FeedResponse)
async def get_feed(
    user_id: str = Query(..., min_length=1, description="ID of the requesting user"),
    limit: Optional[int] = Query(None, description="Page size, clamped to 1..50"),
    cursor: Optional[str] = Query(None, description="Opaque token from a previous page"),
    sort: FeedSort = Query(FeedSort.smart),
    orchestrator: FeedOrchestrator = Depends(get_orchestrator),
):
    settings = orchestrator.settings
    if limit is None:
        limit = settings.feed_default_limit
    limit = max(1, min(limit, settings.feed_max_limit))

    result = await orchestrator.build_feed(user_id, limit, cursor, sort)

    if isinstance(result, DegradedFeed):
        response = FeedResponse(items=[], next_cursor=None, error=result.error)
    else:
        response = FeedResponse(items=result.items, next_cursor=result.next_cursor)
    return JSONResponse(response.to_payload())

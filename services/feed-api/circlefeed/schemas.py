"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedSort(str, Enum):
    latest = "latest"   # chronological pass-through
    smart = "smart"     # ranked


class FeedItem(CamelModel):
    """One deduplicated, enriched feed row."""
    id: str
    subject_id: str                 # external catalog id
    media_kind: str                 # 'movie' | 'tv'
    title: str
    year: Optional[int] = None
    poster: Optional[str] = None
    author_id: str
    author_name: str
    circle_ids: list[str]
    circle_names: list[str]
    rating: Optional[int] = None
    comment: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    available_on: list[str]
    playable_on_my_services: list[str]
    like_count: int
    comment_count: int
    liked_by_me: bool
    created_at: datetime
    # Smart-sort score (4 dp); None in chronological mode
    score: Optional[float] = None


class FeedResponse(CamelModel):
    items: list[FeedItem]
    next_cursor: Optional[str] = None
    # Present only on a degraded response
    error: Optional[str] = None

    def to_payload(self) -> dict:
        exclude = {"error"} if self.error is None else None
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)

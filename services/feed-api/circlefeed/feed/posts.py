"""
Post store — read side of the posts/post_circles tables.

Candidate fetch is a single descending (created_at, post_id) keyset scan
restricted to the viewer's circles, keeping only the newest visible post of
each canonical subject. Each returned record carries only the viewer's
circles its subject was posted to, in the author's listing order.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from circlefeed.feed.cursor import Cursor
from circlefeed.models import Post, PostCircle

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PostRecord:
    """A post as the feed sees it; after merging it is a candidate row."""

    post_id: str
    author_id: str
    media_kind: str
    tmdb_id: str
    created_at: datetime
    canonical_id: Optional[str] = None
    rating: Optional[int] = None
    comment: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    circle_ids: list[str] = field(default_factory=list)
    # Every post folded into this row (itself first)
    merged_post_ids: list[str] = field(default_factory=list)

    @property
    def subject_key(self) -> str:
        # Without a canonical id every post is its own subject
        return self.canonical_id or self.post_id


class PostStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def fetch_window(
        self,
        circle_ids: set[str],
        before: Optional[Cursor],
        limit: int,
    ) -> list[PostRecord]:
        """
        Return up to `limit` posts placed in any of `circle_ids`, newest first,
        strictly older than `before` on (created_at, post_id) when given.

        Cross-posts sharing a canonical id are represented by the newest one
        visible to the viewer; older siblings never come back on their own,
        whichever page the representative landed on. A representative's
        `circle_ids` and `merged_post_ids` cover all of its visible siblings.
        """
        if not circle_ids or limit <= 0:
            return []
        my_circles = sorted(circle_ids)

        in_my_circles = select(PostCircle.post_id).where(PostCircle.circle_id.in_(my_circles))

        newer = aliased(Post)
        newer_placement = aliased(PostCircle)
        has_newer_sibling = (
            select(newer.post_id)
            .join(newer_placement, newer_placement.post_id == newer.post_id)
            .where(
                newer.canonical_id == Post.canonical_id,
                newer_placement.circle_id.in_(my_circles),
                or_(
                    newer.created_at > Post.created_at,
                    and_(newer.created_at == Post.created_at, newer.post_id > Post.post_id),
                ),
            )
            .correlate(Post)
            .exists()
        )

        stmt = select(Post).where(
            Post.post_id.in_(in_my_circles),
            or_(Post.canonical_id.is_(None), ~has_newer_sibling),
        )
        if before is not None:
            stmt = stmt.where(
                or_(
                    Post.created_at < before.ts,
                    and_(Post.created_at == before.ts, Post.post_id < before.id),
                )
            )
        stmt = stmt.order_by(Post.created_at.desc(), Post.post_id.desc()).limit(limit)

        async with self._sessionmaker() as session:
            posts = (await session.execute(stmt)).scalars().all()
            if not posts:
                return []

            # Older siblings of each representative, newest first
            siblings: dict[str, list[str]] = {}
            canonical_ids = sorted({p.canonical_id for p in posts if p.canonical_id})
            if canonical_ids:
                sibling_rows = await session.execute(
                    select(Post.canonical_id, Post.post_id)
                    .where(
                        Post.canonical_id.in_(canonical_ids),
                        Post.post_id.in_(in_my_circles),
                    )
                    .order_by(Post.created_at.desc(), Post.post_id.desc())
                )
                for canonical_id, post_id in sibling_rows.all():
                    siblings.setdefault(canonical_id, []).append(post_id)

            merged_ids: dict[str, list[str]] = {}
            for p in posts:
                others = [pid for pid in siblings.get(p.canonical_id, []) if pid != p.post_id]
                merged_ids[p.post_id] = [p.post_id, *others]

            placements = await session.execute(
                select(PostCircle.post_id, PostCircle.circle_id)
                .where(
                    PostCircle.post_id.in_(sorted({pid for ids in merged_ids.values() for pid in ids})),
                    PostCircle.circle_id.in_(my_circles),
                )
                .order_by(PostCircle.post_id, PostCircle.position, PostCircle.circle_id)
            )
            circles_by_post: dict[str, list[str]] = {}
            for post_id, circle_id in placements.all():
                circles_by_post.setdefault(post_id, []).append(circle_id)

        records = []
        for p in posts:
            circles: dict[str, None] = {}
            for pid in merged_ids[p.post_id]:
                for circle_id in circles_by_post.get(pid, []):
                    circles.setdefault(circle_id)
            records.append(
                PostRecord(
                    post_id=p.post_id,
                    author_id=p.author_id,
                    media_kind=p.media_kind,
                    tmdb_id=p.tmdb_id,
                    created_at=p.created_at,
                    canonical_id=p.canonical_id,
                    rating=p.rating,
                    comment=p.comment,
                    season_number=p.season_number,
                    episode_number=p.episode_number,
                    circle_ids=list(circles),
                    merged_post_ids=merged_ids[p.post_id],
                )
            )
        return records

    async def circle_activity(
        self,
        circle_ids: set[str],
        since: datetime,
    ) -> dict[str, int]:
        """Posts per circle created at or after `since` (one per placement)."""
        if not circle_ids:
            return {}
        stmt = (
            select(PostCircle.circle_id, func.count())
            .join(Post, Post.post_id == PostCircle.post_id)
            .where(PostCircle.circle_id.in_(sorted(circle_ids)), Post.created_at >= since)
            .group_by(PostCircle.circle_id)
        )
        async with self._sessionmaker() as session:
            rows = (await session.execute(stmt)).all()
        return {circle_id: int(count) for circle_id, count in rows}

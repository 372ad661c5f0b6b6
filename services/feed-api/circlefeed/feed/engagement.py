"""
Engagement aggregation over the trailing window.

Counters are computed fresh on every request and never stored on the post.
Likes are unique per (user, post), so the friend like count is the number
of friends who liked. Comments are not unique, so the total counts every
comment while the friend count is the number of distinct friends who
commented.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from circlefeed.models import Comment, Like

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EngagementCounters:
    likes: int = 0
    comments: int = 0
    friend_likes: int = 0
    friend_comments: int = 0


def rollup(
    by_post: dict[str, EngagementCounters],
    post_ids: Iterable[str],
) -> EngagementCounters:
    """Sum the counters of every post merged into one feed row."""
    total = EngagementCounters()
    for pid in post_ids:
        c = by_post.get(pid)
        if c is None:
            continue
        total.likes += c.likes
        total.comments += c.comments
        total.friend_likes += c.friend_likes
        total.friend_comments += c.friend_comments
    return total


class EngagementAggregator:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def counters(
        self,
        post_ids: Iterable[str],
        friend_ids: set[str],
        since: datetime,
    ) -> dict[str, EngagementCounters]:
        """Return counters for every id in `post_ids`; zero when no events."""
        ids = sorted(set(post_ids))
        result = {pid: EngagementCounters() for pid in ids}
        if not ids:
            return result

        async with self._sessionmaker() as session:
            likes = await session.execute(
                select(Like.post_id, Like.user_id).where(
                    Like.post_id.in_(ids), Like.created_at >= since
                )
            )
            for post_id, user_id in likes.all():
                c = result[post_id]
                c.likes += 1
                if user_id in friend_ids:
                    c.friend_likes += 1

            comments = await session.execute(
                select(Comment.post_id, Comment.user_id, func.count())
                .where(Comment.post_id.in_(ids), Comment.created_at >= since)
                .group_by(Comment.post_id, Comment.user_id)
            )
            for post_id, user_id, count in comments.all():
                c = result[post_id]
                c.comments += int(count)
                if user_id in friend_ids:
                    c.friend_comments += 1

        return result

    async def liked_by(self, viewer_id: str, post_ids: Iterable[str]) -> set[str]:
        """Post ids the viewer has liked (any time — display only)."""
        ids = sorted(set(post_ids))
        if not ids:
            return set()
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(Like.post_id).where(
                    Like.user_id == viewer_id, Like.post_id.in_(ids)
                )
            )
            return {r[0] for r in rows.all()}

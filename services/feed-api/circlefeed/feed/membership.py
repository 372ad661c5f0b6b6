"""
Membership resolver and directory lookups over users / circles /
circle_members.

Circle management lives in another service; the feed only needs:
  • which circles the viewer is in
  • how many of those circles each author shares with the viewer
  • everyone reachable through those circles (the "friend" set)
  • display names for authors and circles, and the viewer's services
"""
import logging
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from circlefeed.models import Circle, CircleMember, User

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_NAME = "Someone"
DEFAULT_CIRCLE_NAME = "Circle"


class MembershipResolver:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def groups_of(self, viewer_id: str) -> set[str]:
        """Circles the viewer belongs to; empty set (never an error) if none."""
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(CircleMember.circle_id).where(CircleMember.user_id == viewer_id)
            )
            return {r[0] for r in rows.all()}

    async def mutual_group_counts(
        self,
        circle_ids: set[str],
        author_ids: Iterable[str],
    ) -> dict[str, int]:
        """
        Batched form of mutual_group_count: {author_id: circles in
        `circle_ids` the author is a member of}. Authors sharing none map to 0.
        """
        authors = sorted(set(author_ids))
        if not authors:
            return {}
        counts = dict.fromkeys(authors, 0)
        if not circle_ids:
            return counts

        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(CircleMember.user_id, func.count())
                .where(
                    CircleMember.circle_id.in_(sorted(circle_ids)),
                    CircleMember.user_id.in_(authors),
                )
                .group_by(CircleMember.user_id)
            )
            for user_id, count in rows.all():
                counts[user_id] = int(count)
        return counts

    async def mutual_group_count(
        self,
        circle_ids: set[str],
        author_id: str,
    ) -> int:
        counts = await self.mutual_group_counts(circle_ids, [author_id])
        return counts.get(author_id, 0)

    async def friend_set(self, circle_ids: set[str]) -> set[str]:
        """Union of members across `circle_ids` (includes the viewer)."""
        if not circle_ids:
            return set()
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(CircleMember.user_id)
                .where(CircleMember.circle_id.in_(sorted(circle_ids)))
                .distinct()
            )
            return {r[0] for r in rows.all()}

    async def subscribed_services(self, viewer_id: str) -> set[str]:
        async with self._sessionmaker() as session:
            services = await session.scalar(
                select(User.services).where(User.user_id == viewer_id)
            )
        if not isinstance(services, list):
            return set()
        return {str(s) for s in services}

    async def author_names(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(User.user_id, User.display_name, User.username).where(
                    User.user_id.in_(ids)
                )
            )
            found = {
                uid: display_name or username or DEFAULT_AUTHOR_NAME
                for uid, display_name, username in rows.all()
            }
        return {uid: found.get(uid, DEFAULT_AUTHOR_NAME) for uid in ids}

    async def circle_names(self, circle_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted(set(circle_ids))
        if not ids:
            return {}
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(Circle.circle_id, Circle.name).where(Circle.circle_id.in_(ids))
            )
            return {cid: name or DEFAULT_CIRCLE_NAME for cid, name in rows.all()}

"""
SQLAlchemy ORM models for TiDB.

Tables:
  users          — profiles + subscribed streaming services
  circles        — named membership groups
  circle_members — user × circle membership edges
  posts          — a rating/comment about a catalog title
  post_circles   — post × circle placement (a post lives in ≥1 circles)
  likes          — user × post engagement (unique per pair)
  comments       — user × post engagement (many per pair)

The feed engine only reads these tables; writes belong to other services.
All timestamps are naive UTC.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from circlefeed.database import Base


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    # Provider codes the user subscribes to, e.g. ["netflix", "max"]
    services: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Circle(Base):
    __tablename__ = "circles"

    circle_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    created_by: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.user_id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class CircleMember(Base):
    __tablename__ = "circle_members"

    circle_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("circles.circle_id"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.user_id"), primary_key=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # "Which circles is user X in?" — membership resolution
        Index("idx_circle_members_user", "user_id"),
    )


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    author_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.user_id"), nullable=False
    )
    media_kind: Mapped[str] = mapped_column(String(10), nullable=False)  # 'movie' | 'tv'
    tmdb_id: Mapped[str] = mapped_column(String(40), nullable=False)
    # Shared by cross-posts of the same activity; NULL means "unique post"
    canonical_id: Mapped[Optional[str]] = mapped_column(String(64))
    season_number: Mapped[Optional[int]] = mapped_column(Integer)
    episode_number: Mapped[Optional[int]] = mapped_column(Integer)
    rating: Mapped[Optional[int]] = mapped_column(Integer)        # 1..5
    comment: Mapped[Optional[str]] = mapped_column(Text)          # ≤1000 chars
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_posts_created", "created_at", "post_id"),
        Index("idx_posts_author", "author_id", "created_at"),
        Index("idx_posts_title", "tmdb_id", "media_kind"),
    )


class PostCircle(Base):
    __tablename__ = "post_circles"

    post_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("posts.post_id"), primary_key=True
    )
    circle_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("circles.circle_id"), primary_key=True
    )
    # Order in which the author listed the circles
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        # Circle timelines — candidate fetch scans by circle
        Index("idx_post_circles_circle", "circle_id"),
    )


class Like(Base):
    __tablename__ = "likes"

    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.user_id"), primary_key=True
    )
    post_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("posts.post_id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_likes_post", "post_id", "created_at"),
    )


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    post_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("posts.post_id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.user_id"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_comments_post", "post_id", "created_at"),
    )

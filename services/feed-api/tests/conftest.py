"""
Pytest fixtures for the feed API.

Storage runs on a throwaway SQLite file (aiosqlite) and fakeredis; the
TMDb client talks to an in-process httpx.MockTransport backed by
CatalogStub, so no network is needed.
"""
import asyncio
import os
from datetime import datetime, timedelta

os.environ.setdefault("OTEL_ENABLED", "false")

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient

from circlefeed.clients.catalog_client import TMDbClient
from circlefeed.config import Settings
from circlefeed.database import build_engine, build_sessionmaker, init_db
from circlefeed.main import create_app
from circlefeed.models import Circle, CircleMember, Comment, Like, Post, PostCircle, User, new_id, utcnow


class CatalogStub:
    """Canned TMDb responses keyed by (kind, id)."""

    def __init__(self) -> None:
        self.details: dict[tuple[str, str], dict] = {}
        self.providers: dict[tuple[str, str], dict] = {}
        self.calls: list[str] = []
        self.fail = False
        self.delay = 0.0
        self.in_flight = 0
        self.peak_in_flight = 0

    def add_title(self, kind: str, external_id: str, title: str, year: int = 2020,
                  providers: tuple = ()) -> None:
        if kind == "movie":
            details = {"title": title, "release_date": f"{year}-05-01", "poster_path": f"/{external_id}.jpg"}
        else:
            details = {"name": title, "first_air_date": f"{year}-09-01", "poster_path": f"/{external_id}.jpg"}
        self.details[(kind, external_id)] = details
        self.providers[(kind, external_id)] = {
            "flatrate": [{"provider_name": name} for name in providers]
        }

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            return await self._respond(request)
        finally:
            self.in_flight -= 1

    async def _respond(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            return httpx.Response(503, json={"status_message": "unavailable"})

        # /3/{kind}/{id}[/watch/providers]
        segments = request.url.path.split("/")[2:]
        key = (segments[0], segments[1])
        if key not in self.details:
            return httpx.Response(404, json={"status_message": "not found"})
        if segments[2:] == ["watch", "providers"]:
            return httpx.Response(200, json={"id": key[1], "results": {"US": self.providers[key]}})
        return httpx.Response(200, json=self.details[key])

    def client(self, settings: Settings) -> TMDbClient:
        return TMDbClient(settings, transport=httpx.MockTransport(self.handler))


class World:
    """Builds users, circles, posts and engagement, then writes them in one go."""

    def __init__(self, sessionmaker) -> None:
        self._sessionmaker = sessionmaker
        self._pending: list = []
        self.now = utcnow()

    def user(self, name: str, services: tuple = ()) -> str:
        uid = new_id()
        self._pending.append(
            User(user_id=uid, username=name, display_name=name.title(), services=list(services))
        )
        return uid

    def circle(self, name: str, members: list[str]) -> str:
        cid = new_id()
        self._pending.append(Circle(circle_id=cid, name=name, created_by=members[0]))
        for uid in members:
            self._pending.append(CircleMember(circle_id=cid, user_id=uid))
        return cid

    def post(self, author: str, circles: list[str], *, hours_ago: float = 1.0,
             created_at: datetime | None = None, kind: str = "movie", tmdb_id: str = "603",
             canonical_id: str | None = None, rating: int | None = None,
             comment: str | None = None, post_id: str | None = None) -> str:
        pid = post_id or new_id()
        self._pending.append(
            Post(
                post_id=pid,
                author_id=author,
                media_kind=kind,
                tmdb_id=tmdb_id,
                canonical_id=canonical_id,
                rating=rating,
                comment=comment,
                created_at=created_at or self.now - timedelta(hours=hours_ago),
            )
        )
        for position, cid in enumerate(circles):
            self._pending.append(PostCircle(post_id=pid, circle_id=cid, position=position))
        return pid

    def like(self, user: str, post: str, *, hours_ago: float = 1.0) -> None:
        self._pending.append(
            Like(user_id=user, post_id=post, created_at=self.now - timedelta(hours=hours_ago))
        )

    def comment(self, user: str, post: str, text: str = "nice", *, hours_ago: float = 1.0) -> None:
        self._pending.append(
            Comment(post_id=post, user_id=user, text=text,
                    created_at=self.now - timedelta(hours=hours_ago))
        )

    def commit(self) -> None:
        async def _write():
            async with self._sessionmaker() as session:
                # Parents before children so FK order holds on any backend
                for batch in (User, Circle, CircleMember, Post, PostCircle, Like, Comment):
                    session.add_all([o for o in self._pending if isinstance(o, batch)])
                    await session.flush()
                await session.commit()

        asyncio.run(_write())
        self._pending.clear()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'feed.db'}",
        tmdb_api_url="https://tmdb.test/3",
        catalog_timeout_seconds=0.5,
        otel_enabled=False,
    )


@pytest.fixture
def sessionmaker(settings):
    engine = build_engine(settings)
    asyncio.run(init_db(engine))
    yield build_sessionmaker(engine)
    asyncio.run(engine.dispose())


@pytest.fixture
def world(sessionmaker):
    return World(sessionmaker)


@pytest.fixture
def catalog_stub():
    stub = CatalogStub()
    stub.add_title("movie", "603", "The Matrix", 1999, providers=("Netflix", "Amazon Prime Video"))
    stub.add_title("tv", "1399", "Game of Thrones", 2011, providers=("HBO Max",))
    return stub


@pytest.fixture
def fake_redis():
    # A private server per test; instances otherwise share state by address
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def client(settings, sessionmaker, catalog_stub, fake_redis):
    app = create_app(settings, redis=fake_redis, catalog=catalog_stub.client(settings))
    with TestClient(app) as test_client:
        yield test_client

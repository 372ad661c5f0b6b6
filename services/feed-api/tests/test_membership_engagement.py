import asyncio
from datetime import timedelta

import pytest

from circlefeed.feed.cursor import Cursor
from circlefeed.feed.engagement import EngagementAggregator, EngagementCounters, rollup
from circlefeed.feed.membership import MembershipResolver
from circlefeed.feed.posts import PostStore
from circlefeed.models import Circle, User


@pytest.fixture
def graph(world):
    """
    viewer ── A ── alice, bob
           └─ B ── bob
    carol is in C only (not reachable from the viewer).
    """
    g = {}
    g["viewer"] = world.user("viewer", services=("netflix", "max"))
    g["alice"] = world.user("alice")
    g["bob"] = world.user("bob")
    g["carol"] = world.user("carol")
    g["A"] = world.circle("Film Club", [g["viewer"], g["alice"], g["bob"]])
    g["B"] = world.circle("Roommates", [g["viewer"], g["bob"]])
    g["C"] = world.circle("Elsewhere", [g["carol"]])
    world.commit()
    return g


def test_groups_of(sessionmaker, graph):
    resolver = MembershipResolver(sessionmaker)
    assert asyncio.run(resolver.groups_of(graph["viewer"])) == {graph["A"], graph["B"]}
    assert asyncio.run(resolver.groups_of(graph["carol"])) == {graph["C"]}
    assert asyncio.run(resolver.groups_of("0" * 32)) == set()


def test_mutual_group_counts(sessionmaker, graph):
    resolver = MembershipResolver(sessionmaker)
    mine = {graph["A"], graph["B"]}

    counts = asyncio.run(
        resolver.mutual_group_counts(mine, [graph["alice"], graph["bob"], graph["carol"]])
    )
    assert counts == {graph["alice"]: 1, graph["bob"]: 2, graph["carol"]: 0}
    assert asyncio.run(resolver.mutual_group_count(mine, graph["bob"])) == 2
    assert asyncio.run(resolver.mutual_group_counts(set(), [graph["bob"]])) == {graph["bob"]: 0}
    assert asyncio.run(resolver.mutual_group_counts(mine, [])) == {}


def test_friend_set_and_services(sessionmaker, graph):
    resolver = MembershipResolver(sessionmaker)
    friends = asyncio.run(resolver.friend_set({graph["A"], graph["B"]}))
    assert friends == {graph["viewer"], graph["alice"], graph["bob"]}
    assert asyncio.run(resolver.friend_set(set())) == set()

    assert asyncio.run(resolver.subscribed_services(graph["viewer"])) == {"netflix", "max"}
    assert asyncio.run(resolver.subscribed_services(graph["alice"])) == set()
    assert asyncio.run(resolver.subscribed_services("0" * 32)) == set()


def test_names_fall_back(sessionmaker, graph):
    async def _add_nameless():
        async with sessionmaker() as session:
            session.add(User(user_id="d" * 32, username="", display_name=None))
            await session.flush()
            session.add(Circle(circle_id="e" * 32, name="", created_by="d" * 32))
            await session.commit()

    asyncio.run(_add_nameless())
    resolver = MembershipResolver(sessionmaker)

    authors = asyncio.run(resolver.author_names([graph["alice"], "d" * 32, "f" * 32]))
    assert authors == {graph["alice"]: "Alice", "d" * 32: "Someone", "f" * 32: "Someone"}

    circles = asyncio.run(resolver.circle_names([graph["A"], "e" * 32]))
    assert circles == {graph["A"]: "Film Club", "e" * 32: "Circle"}


def test_engagement_counters_within_window(sessionmaker, graph, world):
    post = world.post(graph["alice"], [graph["A"]], hours_ago=2)
    quiet = world.post(graph["bob"], [graph["B"]], hours_ago=3)
    world.like(graph["bob"], post)
    world.like(graph["carol"], post)
    world.like(graph["viewer"], post, hours_ago=24 * 20)      # outside the window
    world.comment(graph["bob"], post, "one")
    world.comment(graph["bob"], post, "two")
    world.comment(graph["carol"], post, "hi")
    world.comment(graph["alice"], post, "old", hours_ago=24 * 15)
    world.commit()

    friends = {graph["viewer"], graph["alice"], graph["bob"]}
    since = world.now - timedelta(days=14)
    counters = asyncio.run(
        EngagementAggregator(sessionmaker).counters([post, quiet], friends, since)
    )

    assert counters[post] == EngagementCounters(
        likes=2, comments=3, friend_likes=1, friend_comments=1
    )
    assert counters[quiet] == EngagementCounters()


def test_liked_by_ignores_window(sessionmaker, graph, world):
    old = world.post(graph["alice"], [graph["A"]], hours_ago=24 * 30)
    new = world.post(graph["alice"], [graph["A"]], hours_ago=1)
    world.like(graph["viewer"], old, hours_ago=24 * 29)
    world.commit()

    aggregator = EngagementAggregator(sessionmaker)
    assert asyncio.run(aggregator.liked_by(graph["viewer"], [old, new])) == {old}
    assert asyncio.run(aggregator.liked_by(graph["viewer"], [])) == set()


def test_rollup_sums_merged_posts():
    by_post = {
        "p1": EngagementCounters(likes=10, friend_likes=3),
        "p2": EngagementCounters(likes=1, comments=2, friend_comments=1),
    }
    assert rollup(by_post, ["p2", "p1", "missing"]) == EngagementCounters(
        likes=11, comments=2, friend_likes=3, friend_comments=1
    )


def test_circle_activity_counts_recent_placements(sessionmaker, graph, world):
    world.post(graph["alice"], [graph["A"], graph["B"]], hours_ago=5)
    world.post(graph["bob"], [graph["A"]], hours_ago=10)
    world.post(graph["bob"], [graph["A"]], hours_ago=24 * 20)
    world.post(graph["carol"], [graph["C"]], hours_ago=1)
    world.commit()

    store = PostStore(sessionmaker)
    since = world.now - timedelta(days=14)
    activity = asyncio.run(store.circle_activity({graph["A"], graph["B"]}, since))
    assert activity == {graph["A"]: 2, graph["B"]: 1}


def test_fetch_window_collapses_siblings_beyond_the_window(sessionmaker, graph, world):
    newest = world.post(graph["bob"], [graph["A"]], hours_ago=1, canonical_id="s1")
    middle = world.post(graph["alice"], [graph["A"]], hours_ago=2)
    oldest = world.post(graph["bob"], [graph["B"]], hours_ago=3, canonical_id="s1")
    world.commit()

    store = PostStore(sessionmaker)
    mine = {graph["A"], graph["B"]}

    first = asyncio.run(store.fetch_window(mine, None, 1))
    assert [r.post_id for r in first] == [newest]
    assert first[0].circle_ids == [graph["A"], graph["B"]]
    assert first[0].merged_post_ids == [newest, oldest]

    rest = asyncio.run(
        store.fetch_window(mine, Cursor(ts=first[0].created_at, id=newest), 10)
    )
    assert [r.post_id for r in rest] == [middle]


def test_sibling_outside_viewer_circles_does_not_hide_post(sessionmaker, graph, world):
    hidden = world.post(graph["carol"], [graph["C"]], hours_ago=1, canonical_id="s2")
    visible = world.post(graph["bob"], [graph["B"]], hours_ago=2, canonical_id="s2")
    world.commit()

    rows = asyncio.run(PostStore(sessionmaker).fetch_window({graph["A"], graph["B"]}, None, 10))
    assert [r.post_id for r in rows] == [visible]
    assert rows[0].merged_post_ids == [visible]
    assert hidden not in rows[0].merged_post_ids


def test_fetch_window_keeps_only_viewer_circles(sessionmaker, graph, world):
    shared = world.post(graph["bob"], [graph["B"], graph["C"], graph["A"]], hours_ago=1)
    world.post(graph["carol"], [graph["C"]], hours_ago=2)
    world.commit()

    rows = asyncio.run(PostStore(sessionmaker).fetch_window({graph["A"], graph["B"]}, None, 10))
    assert [r.post_id for r in rows] == [shared]
    assert rows[0].circle_ids == [graph["B"], graph["A"]]
    assert rows[0].merged_post_ids == [shared]

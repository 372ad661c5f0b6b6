#!/usr/bin/env python3
"""
Seed script — writes a realistic dataset straight into the feed database.

Creates:
  • 10 users, each subscribed to 1-3 streaming services
  • 4 circles with overlapping membership
  • 5 posts per user (rating and/or comment about a TMDb title), some of
    them cross-posted to a second circle under a shared canonical id
  • Likes and comments across posts, spread over the last three weeks

The feed API only reads these tables, so the script talks to the database
directly. Run from the repo root after the database is up:
  python scripts/seed_data.py --database-url mysql+aiomysql://root:@localhost:4000/circlefeed

All IDs are printed so you can use them in curl commands.
"""
import argparse
import asyncio
import random
from datetime import timedelta

from circlefeed.config import Settings
from circlefeed.database import build_engine, build_sessionmaker, init_db
from circlefeed.models import (
    Circle,
    CircleMember,
    Comment,
    Like,
    Post,
    PostCircle,
    User,
    new_id,
    utcnow,
)

BASE_USERS = [
    ("alice_ai", "Alice Chen"),
    ("bob_builder", "Bob Martinez"),
    ("carol_codes", "Carol Singh"),
    ("dave_designs", "Dave Kim"),
    ("eve_engineer", "Eve Johnson"),
    ("frank_feeds", "Frank Williams"),
    ("grace_graphs", "Grace Li"),
    ("henry_hpc", "Henry Brown"),
    ("iris_infra", "Iris Davis"),
    ("jack_ml", "Jack Wilson"),
]

SERVICES = ["netflix", "hulu", "max", "prime", "disney", "peacock"]

CIRCLES = ["Film Club", "Roommates", "Sci-Fi Nerds", "Family"]

# (media kind, TMDb id)
TITLES = [
    ("movie", "603"),      # The Matrix
    ("movie", "27205"),    # Inception
    ("movie", "157336"),   # Interstellar
    ("movie", "438631"),   # Dune
    ("movie", "693134"),   # Dune: Part Two
    ("tv", "1399"),        # Game of Thrones
    ("tv", "66732"),       # Stranger Things
    ("tv", "94997"),       # House of the Dragon
    ("tv", "100088"),      # The Last of Us
    ("tv", "136315"),      # The Bear
]

SAMPLE_COMMENTS = [
    "Rewatched it this weekend and it still holds up.",
    "The second half drags but the ending makes up for it.",
    "Soundtrack alone is worth it.",
    "Not sure what the hype is about, honestly.",
    "Best thing I've watched all year.",
    "Finally got around to this one. No regrets.",
    "Slow start, then it absolutely does not let go.",
    "Watch it on the biggest screen you can find.",
]

SAMPLE_REPLIES = ["Agreed!", "Hard disagree", "Adding it to my list", "That finale though", "Same"]


async def seed(database_url: str) -> None:
    settings = Settings(database_url=database_url)
    engine = build_engine(settings)
    await init_db(engine)
    sessionmaker = build_sessionmaker(engine)
    now = utcnow()

    async with sessionmaker() as session:
        # ── Users ─────────────────────────────────────────────────────────
        print("Creating users...")
        users: list[User] = []
        for username, display_name in BASE_USERS:
            user = User(
                user_id=new_id(),
                username=username,
                display_name=display_name,
                services=random.sample(SERVICES, k=random.randint(1, 3)),
            )
            users.append(user)
            print(f"  ✓ {username} ({user.user_id}) services={user.services}")
        session.add_all(users)
        await session.flush()

        # ── Circles ───────────────────────────────────────────────────────
        print("\nCreating circles...")
        members_of: dict[str, list[str]] = {}
        for name in CIRCLES:
            members = random.sample(users, k=random.randint(3, 6))
            circle = Circle(circle_id=new_id(), name=name, created_by=members[0].user_id)
            session.add(circle)
            await session.flush()
            session.add_all(
                CircleMember(circle_id=circle.circle_id, user_id=m.user_id) for m in members
            )
            members_of[circle.circle_id] = [m.user_id for m in members]
            print(f"  ✓ {name} ({circle.circle_id}) — {len(members)} members")
        await session.flush()

        circles_of: dict[str, list[str]] = {}
        for circle_id, member_ids in members_of.items():
            for uid in member_ids:
                circles_of.setdefault(uid, []).append(circle_id)

        # ── Posts ─────────────────────────────────────────────────────────
        print("\nCreating posts...")
        posts: list[Post] = []
        cross_posts = 0
        for user in users:
            my_circles = circles_of.get(user.user_id)
            if not my_circles:
                continue
            for _ in range(5):
                kind, tmdb_id = random.choice(TITLES)
                created_at = now - timedelta(hours=random.uniform(0.5, 24 * 21))
                rating = random.choice([None, 1, 2, 3, 4, 5])
                comment = random.choice(SAMPLE_COMMENTS) if rating is None or random.random() < 0.5 else None
                season = episode = None
                if kind == "tv" and random.random() < 0.4:
                    season, episode = random.randint(1, 4), random.randint(1, 10)

                targets = [random.choice(my_circles)]
                canonical_id = None
                if len(my_circles) > 1 and random.random() < 0.3:
                    targets.append(random.choice([c for c in my_circles if c != targets[0]]))
                    canonical_id = f"{user.user_id}:{kind}:{tmdb_id}:{new_id()[:8]}"
                    cross_posts += 1

                # One post row per target circle; cross-posts share canonical_id
                for offset, circle_id in enumerate(targets):
                    post = Post(
                        post_id=new_id(),
                        author_id=user.user_id,
                        media_kind=kind,
                        tmdb_id=tmdb_id,
                        canonical_id=canonical_id,
                        season_number=season,
                        episode_number=episode,
                        rating=rating,
                        comment=comment,
                        created_at=created_at + timedelta(minutes=offset * 7),
                    )
                    session.add(post)
                    await session.flush()
                    session.add(PostCircle(post_id=post.post_id, circle_id=circle_id, position=0))
                    posts.append(post)
        await session.flush()
        print(f"  ✓ {len(posts)} posts created ({cross_posts} cross-posted)")

        # ── Likes + comments ──────────────────────────────────────────────
        print("\nAdding likes and comments...")
        likes = comments = 0
        for post in posts:
            # Each post gets 0-5 random likes
            for user in random.sample(users, k=random.randint(0, 5)):
                session.add(
                    Like(
                        user_id=user.user_id,
                        post_id=post.post_id,
                        created_at=post.created_at + timedelta(hours=random.uniform(0, 48)),
                    )
                )
                likes += 1
            for _ in range(random.randint(0, 3)):
                session.add(
                    Comment(
                        post_id=post.post_id,
                        user_id=random.choice(users).user_id,
                        text=random.choice(SAMPLE_REPLIES),
                        created_at=post.created_at + timedelta(hours=random.uniform(0, 72)),
                    )
                )
                comments += 1
        await session.commit()
        print(f"  ✓ {likes} likes, {comments} comments added")

    await engine.dispose()

    # ── Print summary ─────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    u = users[0].user_id
    print(f"# Smart feed for '{BASE_USERS[0][0]}':")
    print(f"  curl -s 'http://localhost:8000/feed?user_id={u}' | python3 -m json.tool\n")
    print(f"# Chronological feed, 5 per page:")
    print(f"  curl -s 'http://localhost:8000/feed?user_id={u}&sort=latest&limit=5' | python3 -m json.tool\n")
    print(f"# Check Jaeger traces: http://localhost:16686")
    print(f"# Check Prometheus metrics: http://localhost:8000/metrics")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the circle feed database")
    parser.add_argument(
        "--database-url",
        default=Settings().database_url,
        help="SQLAlchemy async URL (default: DATABASE_URL / settings)",
    )
    args = parser.parse_args()
    asyncio.run(seed(args.database_url))

"""
Feed orchestrator — builds one page of a viewer's circle feed.

  Stage 1 │ Membership
  ────────┼──────────────────────────────────────────────────────────────
          │  Resolve the viewer's circles + subscribed services.
          │  No circles → empty (healthy) feed.

  Stage 2 │ Candidates
  ────────┼──────────────────────────────────────────────────────────────
          │  Keyset scan of posts in those circles, older than the cursor,
          │  one row per canonical subject (newest cross-post wins).
          │  latest: limit + 1 rows    smart: min(limit * 3, 150) rows

  Stage 3 │ Signals + Enrichment (concurrent)
  ────────┼──────────────────────────────────────────────────────────────
          │  Mutual circles per author, circle activity, engagement
          │  counters, viewer likes, display names.
          │  Title metadata + providers per (kind, id), memoised.

  Stage 4 │ Order, Paginate, Assemble
  ────────┼──────────────────────────────────────────────────────────────
          │  smart: score + sort; latest: keep chronological order.
          │  Truncate to limit; a next cursor only when rows remain past
          │  the limit, taken from the chronological position of the
          │  last emitted row.

Any exception escaping the pipeline yields DegradedFeed instead of an error.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from opentelemetry import trace

from circlefeed.config import Settings
from circlefeed.feed.cursor import Cursor, decode_cursor, encode_cursor
from circlefeed.feed.dedup import merge_cross_posts
from circlefeed.feed.engagement import EngagementAggregator, EngagementCounters, rollup
from circlefeed.feed.enrichment import EnrichmentCache, TitleEnrichment
from circlefeed.feed.membership import DEFAULT_AUTHOR_NAME, MembershipResolver
from circlefeed.feed.posts import PostRecord, PostStore
from circlefeed.feed.scoring import CircleActivity, RankingSignals, rank_signals
from circlefeed.models import utcnow
from circlefeed.schemas import FeedItem, FeedSort
from circlefeed.telemetry import FEED_CANDIDATES_TOTAL, FEED_LATENCY, FEED_REQUESTS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INTERNAL_ERROR = "internal_error"


@dataclass
class FeedPage:
    items: list[FeedItem] = field(default_factory=list)
    next_cursor: Optional[str] = None


@dataclass
class DegradedFeed:
    error: str = INTERNAL_ERROR


FeedResult = Union[FeedPage, DegradedFeed]


@dataclass
class _Signals:
    mutual: dict[str, int]
    activity: CircleActivity
    engagement: dict[str, EngagementCounters]
    liked: set[str]
    author_names: dict[str, str]
    circle_names: dict[str, str]


def _naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


class FeedOrchestrator:
    def __init__(
        self,
        membership: MembershipResolver,
        posts: PostStore,
        engagement: EngagementAggregator,
        enrichment: EnrichmentCache,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.membership = membership
        self.posts = posts
        self.engagement = engagement
        self.enrichment = enrichment
        self.settings = settings
        self._clock = clock

    def window_size(self, limit: int, sort: FeedSort) -> int:
        if sort is FeedSort.smart:
            return min(
                limit * self.settings.feed_ranked_window_factor,
                self.settings.feed_ranked_window_cap,
            )
        return limit + 1

    async def build_feed(
        self,
        viewer_id: str,
        limit: int,
        cursor: Optional[str] = None,
        sort: FeedSort = FeedSort.smart,
    ) -> FeedResult:
        start_time = time.perf_counter()
        try:
            with tracer.start_as_current_span("build_feed") as span:
                span.set_attribute("user.id", viewer_id)
                span.set_attribute("feed.sort", sort.value)
                page = await self._build(viewer_id, limit, cursor, sort)
                span.set_attribute("feed.items_returned", len(page.items))
                return page
        except Exception:
            logger.exception("Feed error for user %s", viewer_id)
            FEED_REQUESTS_TOTAL.labels(outcome="degraded").inc()
            return DegradedFeed()
        finally:
            FEED_LATENCY.labels(sort=sort.value).observe(time.perf_counter() - start_time)

    async def _build(
        self,
        viewer_id: str,
        limit: int,
        cursor: Optional[str],
        sort: FeedSort,
    ) -> FeedPage:
        # ═══ Stage 1 — Membership ═══════════════════════════════════════
        with tracer.start_as_current_span("resolve_membership"):
            circle_ids, services = await asyncio.gather(
                self.membership.groups_of(viewer_id),
                self.membership.subscribed_services(viewer_id),
            )
        if not circle_ids:
            FEED_REQUESTS_TOTAL.labels(outcome="empty").inc()
            return FeedPage()

        # ═══ Stage 2 — Candidates ═══════════════════════════════════════
        before = decode_cursor(cursor)
        if cursor and before is None:
            logger.info("Ignoring invalid cursor for user %s", viewer_id)
        if before is not None:
            before = Cursor(ts=_naive_utc(before.ts), id=before.id)

        window = self.window_size(limit, sort)
        with tracer.start_as_current_span("fetch_candidates"):
            raw = await self.posts.fetch_window(circle_ids, before, window)
            rows = merge_cross_posts(raw)
        FEED_CANDIDATES_TOTAL.labels(stage="fetched").inc(len(raw))
        FEED_CANDIDATES_TOTAL.labels(stage="merged").inc(len(rows))

        # ═══ Stage 3 — Signals + Enrichment ═════════════════════════════
        now = self._clock()
        with tracer.start_as_current_span("signals_and_enrichment"):
            signals, titles = await asyncio.gather(
                self._collect_signals(viewer_id, circle_ids, rows, now),
                self.enrichment.session().resolve_many(
                    (row.media_kind, row.tmdb_id) for row in rows
                ),
            )

        # ═══ Stage 4 — Order, Paginate, Assemble ════════════════════════
        scores: dict[str, float] = {}
        if sort is FeedSort.smart:
            with tracer.start_as_current_span("score"):
                by_id = {row.post_id: row for row in rows}
                ranked = rank_signals(
                    (self._ranking_signals(row, signals, titles, services) for row in rows),
                    signals.activity,
                    now,
                    self.settings.recency_tau_hours,
                )
                rows = [by_id[s.post_id] for s, _ in ranked]
                scores = {s.post_id: score for s, score in ranked}

        page_rows = rows[:limit]
        has_more = len(rows) > limit
        next_cursor = None
        if has_more and page_rows:
            tail = page_rows[-1]
            next_cursor = encode_cursor(tail.created_at, tail.post_id)

        items = [
            self._assemble(row, signals, titles[(row.media_kind, row.tmdb_id)], services, scores)
            for row in page_rows
        ]
        FEED_REQUESTS_TOTAL.labels(outcome="ok").inc()
        logger.debug(
            "Feed for %s: sort=%s fetched=%d merged=%d returned=%d more=%s",
            viewer_id, sort.value, len(raw), len(rows), len(items), has_more,
        )
        return FeedPage(items=items, next_cursor=next_cursor)

    async def _collect_signals(
        self,
        viewer_id: str,
        circle_ids: set[str],
        rows: list[PostRecord],
        now: datetime,
    ) -> _Signals:
        since = now - timedelta(days=self.settings.engagement_window_days)
        post_ids = [pid for row in rows for pid in row.merged_post_ids]
        authors = {row.author_id for row in rows}

        async def engagement_counters() -> dict[str, EngagementCounters]:
            friends = await self.membership.friend_set(circle_ids)
            return await self.engagement.counters(post_ids, friends, since)

        mutual, activity, engagement, liked, author_names, circle_names = await asyncio.gather(
            self.membership.mutual_group_counts(circle_ids, authors),
            self.posts.circle_activity(circle_ids, since),
            engagement_counters(),
            self.engagement.liked_by(viewer_id, post_ids),
            self.membership.author_names(authors),
            self.membership.circle_names(circle_ids),
        )
        return _Signals(
            mutual=mutual,
            activity=CircleActivity(activity),
            engagement=engagement,
            liked=liked,
            author_names=author_names,
            circle_names=circle_names,
        )

    @staticmethod
    def _ranking_signals(
        row: PostRecord,
        signals: _Signals,
        titles: dict[tuple[str, str], TitleEnrichment],
        services: set[str],
    ) -> RankingSignals:
        providers = titles[(row.media_kind, row.tmdb_id)].providers
        return RankingSignals(
            post_id=row.post_id,
            created_at=row.created_at,
            circle_ids=row.circle_ids,
            has_rating=bool(row.rating),
            comment_length=len(row.comment or ""),
            provider_matches=sum(1 for p in providers if p in services),
            mutual_circles=signals.mutual.get(row.author_id, 0),
            engagement=rollup(signals.engagement, row.merged_post_ids),
        )

    @staticmethod
    def _assemble(
        row: PostRecord,
        signals: _Signals,
        title: TitleEnrichment,
        services: set[str],
        scores: dict[str, float],
    ) -> FeedItem:
        counters = rollup(signals.engagement, row.merged_post_ids)
        score = scores.get(row.post_id)
        return FeedItem(
            id=row.post_id,
            subject_id=row.tmdb_id,
            media_kind=row.media_kind,
            title=title.title,
            year=title.year,
            poster=title.poster,
            author_id=row.author_id,
            author_name=signals.author_names.get(row.author_id, DEFAULT_AUTHOR_NAME),
            circle_ids=list(row.circle_ids),
            circle_names=[
                signals.circle_names[c] for c in row.circle_ids if c in signals.circle_names
            ],
            rating=row.rating,
            comment=row.comment,
            season_number=row.season_number,
            episode_number=row.episode_number,
            available_on=list(title.providers),
            playable_on_my_services=[p for p in title.providers if p in services],
            like_count=counters.likes,
            comment_count=counters.comments,
            liked_by_me=any(pid in signals.liked for pid in row.merged_post_ids),
            created_at=row.created_at.replace(tzinfo=timezone.utc),
            score=round(score, 4) if score is not None else None,
        )

"""
Title enrichment: display metadata + streaming availability per
(media kind, external id, region), with a staleness-tolerant cache in
front of the catalog.

Lookup order:
  1. Stored record younger than the staleness threshold → serve it.
  2. Otherwise refetch details + providers from the catalog.
  3. Refetch succeeded → upsert the record and serve it.
  4. Refetch failed → serve the stale record if any, else a placeholder.

Nothing here raises to the feed: a lookup always yields a TitleEnrichment.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Iterable, Optional

from circlefeed.clients.catalog_client import TMDbClient
from circlefeed.clients.redis_client import TitleCacheStore
from circlefeed.telemetry import ENRICHMENT_LOOKUPS_TOTAL

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE = "Untitled"

# Canonical streaming service codes
SERVICE_CODES = ("netflix", "hulu", "max", "prime", "disney", "peacock")

_PROVIDER_LISTS = ("flatrate", "rent", "buy")


def normalize_provider_name(name: str) -> Optional[str]:
    """Map a catalog provider name to a service code, or None if unknown."""
    n = (name or "").strip().lower()
    if "netflix" in n:
        return "netflix"
    if n == "hulu":
        return "hulu"
    if "hbo" in n or n == "max":
        return "max"
    if "prime" in n:
        return "prime"
    if "disney" in n:
        return "disney"
    if "peacock" in n:
        return "peacock"
    return None


def normalize_providers(territory: dict) -> list[str]:
    """Service codes across flatrate/rent/buy, de-duplicated, first-seen order."""
    codes: dict[str, None] = {}
    for list_name in _PROVIDER_LISTS:
        for entry in territory.get(list_name) or []:
            if not isinstance(entry, dict):
                continue
            code = normalize_provider_name(str(entry.get("provider_name") or ""))
            if code:
                codes.setdefault(code)
    return list(codes)


@dataclass(slots=True)
class TitleEnrichment:
    title: str = PLACEHOLDER_TITLE
    year: Optional[int] = None
    poster: Optional[str] = None
    providers: list[str] = field(default_factory=list)

    def as_record(self) -> dict:
        return {
            "title": self.title,
            "year": self.year,
            "poster": self.poster,
            "providers": list(self.providers),
        }

    @classmethod
    def from_record(cls, record: dict) -> "TitleEnrichment":
        return cls(
            title=record.get("title") or PLACEHOLDER_TITLE,
            year=record.get("year"),
            poster=record.get("poster"),
            providers=list(record.get("providers") or []),
        )


class EnrichmentCache:
    def __init__(
        self,
        store: TitleCacheStore,
        catalog: TMDbClient,
        *,
        region: str = "US",
        stale_after: timedelta = timedelta(days=7),
        timeout: float = 3.0,
        max_concurrency: int = 8,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self.region = region
        self._stale_after = stale_after.total_seconds()
        self._timeout = timeout
        self._max_concurrency = max(1, max_concurrency)
        self._clock = clock

    def session(self) -> "EnrichmentSession":
        """A per-request view that memoises lookups and bounds fan-out."""
        return EnrichmentSession(self, self._max_concurrency)

    async def resolve(
        self,
        kind: str,
        external_id: str,
        region: Optional[str] = None,
    ) -> TitleEnrichment:
        region = region or self.region

        cached: Optional[dict] = None
        try:
            cached = await self._store.get(kind, external_id, region)
        except Exception as exc:
            logger.warning("Title cache read failed for %s:%s: %s", kind, external_id, exc)

        now = self._clock()
        if cached is not None and now - cached["updated_at"] < self._stale_after:
            ENRICHMENT_LOOKUPS_TOTAL.labels(outcome="cache_hit").inc()
            return TitleEnrichment.from_record(cached)

        try:
            fresh = await asyncio.wait_for(
                self._refetch(kind, external_id, region), timeout=self._timeout
            )
        except Exception as exc:
            if cached is not None:
                logger.warning(
                    "Catalog refetch failed for %s:%s (%r) — serving stale record",
                    kind, external_id, exc,
                )
                ENRICHMENT_LOOKUPS_TOTAL.labels(outcome="stale_fallback").inc()
                return TitleEnrichment.from_record(cached)
            logger.warning(
                "Catalog lookup failed for %s:%s (%r) — using placeholder",
                kind, external_id, exc,
            )
            ENRICHMENT_LOOKUPS_TOTAL.labels(outcome="placeholder").inc()
            return TitleEnrichment()

        try:
            await self._store.put(kind, external_id, region, fresh.as_record(), now)
        except Exception as exc:
            logger.warning("Title cache write failed for %s:%s: %s", kind, external_id, exc)

        ENRICHMENT_LOOKUPS_TOTAL.labels(outcome="refreshed").inc()
        return fresh

    async def _refetch(self, kind: str, external_id: str, region: str) -> TitleEnrichment:
        details, territory = await asyncio.gather(
            self._catalog.get_details(kind, external_id),
            self._catalog.get_watch_providers(kind, external_id, region),
        )
        meta = self._catalog.describe(kind, details)
        return TitleEnrichment(
            title=meta["title"],
            year=meta["year"],
            poster=meta["poster"],
            providers=normalize_providers(territory),
        )


class EnrichmentSession:
    """
    Request-scoped memo: each (kind, external_id) is resolved at most once,
    and at most `max_concurrency` catalog lookups run at a time.
    """

    def __init__(self, cache: EnrichmentCache, max_concurrency: int) -> None:
        self._cache = cache
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._memo: dict[tuple[str, str], asyncio.Future] = {}

    async def _bounded(self, kind: str, external_id: str) -> TitleEnrichment:
        async with self._semaphore:
            return await self._cache.resolve(kind, external_id)

    async def resolve(self, kind: str, external_id: str) -> TitleEnrichment:
        key = (kind, external_id)
        task = self._memo.get(key)
        if task is None:
            task = asyncio.ensure_future(self._bounded(kind, external_id))
            self._memo[key] = task
        return await task

    async def resolve_many(
        self,
        keys: Iterable[tuple[str, str]],
    ) -> dict[tuple[str, str], TitleEnrichment]:
        unique = list(dict.fromkeys(keys))
        results = await asyncio.gather(*(self.resolve(kind, eid) for kind, eid in unique))
        return dict(zip(unique, results))

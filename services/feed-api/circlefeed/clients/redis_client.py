"""
Redis client wrapper.

Responsibilities:
  • Title cache — HASH keyed by title:{kind}:{external_id}:{region}
                   fields: title, year, poster, providers (JSON list),
                           updated_at (Unix seconds)

Records carry no TTL: they stay usable as a fallback forever and are
judged stale by updated_at. Writes are a single HSET of the full record,
so concurrent refreshers of the same title converge on the same state.
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from circlefeed.config import Settings

logger = logging.getLogger(__name__)

TITLE_KEY = "title:{kind}:{external_id}:{region}"


def build_redis(settings: Settings) -> aioredis.Redis:
    return aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )


class TitleCacheStore:
    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    @staticmethod
    def key(kind: str, external_id: str, region: str) -> str:
        return TITLE_KEY.format(kind=kind, external_id=external_id, region=region)

    async def get(self, kind: str, external_id: str, region: str) -> Optional[dict]:
        """
        Return the stored record as
        {title, year, poster, providers, updated_at} or None if absent.
        """
        raw = await self._redis.hgetall(self.key(kind, external_id, region))
        if not raw:
            return None
        try:
            providers = json.loads(raw.get("providers") or "[]")
            updated_at = float(raw.get("updated_at") or 0.0)
        except ValueError:
            logger.warning("Corrupt title cache record for %s:%s", kind, external_id)
            return None
        year = raw.get("year") or ""
        return {
            "title": raw.get("title") or "",
            "year": int(year) if year.isdigit() else None,
            "poster": raw.get("poster") or None,
            "providers": [str(p) for p in providers] if isinstance(providers, list) else [],
            "updated_at": updated_at,
        }

    async def put(
        self,
        kind: str,
        external_id: str,
        region: str,
        record: dict,
        updated_at: float,
    ) -> None:
        await self._redis.hset(
            self.key(kind, external_id, region),
            mapping={
                "title": record["title"],
                "year": "" if record.get("year") is None else str(record["year"]),
                "poster": record.get("poster") or "",
                "providers": json.dumps(list(record.get("providers") or [])),
                "updated_at": repr(float(updated_at)),
            },
        )

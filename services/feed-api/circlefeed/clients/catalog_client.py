"""
TMDb catalog client.

Two read calls back feed enrichment:
  GET /{movie|tv}/{id}                  → title details
  GET /{movie|tv}/{id}/watch/providers  → { results: { US: { flatrate, rent, buy } } }

Every call is bounded by the client timeout. HTTP and decoding errors
raise; the enrichment cache decides how to degrade.
"""
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from circlefeed.config import Settings

logger = logging.getLogger(__name__)

MEDIA_KINDS = ("movie", "tv")


class CatalogError(Exception):
    """The catalog returned something we could not use."""


class TMDbClient:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = settings.tmdb_api_url
        self.image_base_url = settings.tmdb_image_base_url.rstrip("/")
        self._api_key = settings.tmdb_api_key
        self._timeout = settings.catalog_timeout_seconds
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        params = {"api_key": self._api_key} if self._api_key else None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            params=params,
            transport=self._transport,
        )

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()

    async def _get_json(self, path: str) -> dict:
        if self._http is None:
            raise RuntimeError("TMDbClient not started — call start() at startup")
        resp = await self._http.get(path)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise CatalogError(f"Unexpected payload from {path}")
        return data

    @staticmethod
    def _path(kind: str, external_id: str) -> str:
        if kind not in MEDIA_KINDS:
            raise ValueError(f"Unknown media kind: {kind!r}")
        return f"/{kind}/{quote(str(external_id), safe='')}"

    async def get_details(self, kind: str, external_id: str) -> dict:
        return await self._get_json(self._path(kind, external_id))

    async def get_watch_providers(
        self,
        kind: str,
        external_id: str,
        region: str,
    ) -> dict:
        """Return the region's territory object ({} if the title has none there)."""
        data = await self._get_json(f"{self._path(kind, external_id)}/watch/providers")
        territory = (data.get("results") or {}).get(region) or {}
        return territory if isinstance(territory, dict) else {}

    def poster_url(self, poster_path: Optional[str]) -> Optional[str]:
        if not poster_path:
            return None
        return f"{self.image_base_url}{poster_path}"

    def describe(self, kind: str, details: dict) -> dict:
        """Reduce a details payload to {title, year, poster}."""
        if kind == "movie":
            title = details.get("title") or details.get("original_title")
            date = details.get("release_date")
        else:
            title = details.get("name") or details.get("original_name")
            date = details.get("first_air_date")
        year = None
        if date and str(date)[:4].isdigit():
            year = int(str(date)[:4])
        return {
            "title": title or "Untitled",
            "year": year,
            "poster": self.poster_url(details.get("poster_path")),
        }

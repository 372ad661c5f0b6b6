"""
Circle Feed API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB engine + session factory (TiDB) and create tables
  3. Connect to Redis (title cache)
  4. Start the TMDb catalog client
  5. Wire the feed engine (membership, posts, engagement, enrichment)
  6. Expose Prometheus /metrics endpoint

Run with:  uvicorn circlefeed.main:app
"""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import redis.asyncio as aioredis
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from circlefeed.clients.catalog_client import TMDbClient
from circlefeed.clients.redis_client import TitleCacheStore, build_redis
from circlefeed.config import Settings, settings as default_settings
from circlefeed.database import build_engine, build_sessionmaker, init_db
from circlefeed.feed.engagement import EngagementAggregator
from circlefeed.feed.enrichment import EnrichmentCache
from circlefeed.feed.membership import MembershipResolver
from circlefeed.feed.orchestrator import FeedOrchestrator
from circlefeed.feed.posts import PostStore
from circlefeed.routers import feed
from circlefeed.telemetry import instrument_app, instrument_engine, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """400 with per-field messages, e.g. {"limit": ["Input should be a valid integer"]}."""
    details: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        field = str(loc[-1]) if loc else "request"
        details.setdefault(field, []).append(err.get("msg", "invalid"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation_error", "details": details},
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    redis: Optional[aioredis.Redis] = None,
    catalog: Optional[TMDbClient] = None,
) -> FastAPI:
    """
    Build the FastAPI app. `redis` and `catalog` replace the clients the
    lifespan would otherwise construct from settings.
    """
    settings = settings or default_settings

    if settings.otel_enabled:
        # Set up tracing before the app is created so all clients are instrumented
        setup_tracing(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown of all external connections."""
        logger.info("Starting Circle Feed API (env=%s)", settings.environment)

        engine = build_engine(settings)
        if settings.otel_enabled:
            instrument_engine(engine)
        await init_db(engine)
        sessionmaker = build_sessionmaker(engine)

        redis_conn = redis if redis is not None else build_redis(settings)
        await redis_conn.ping()

        catalog_client = catalog if catalog is not None else TMDbClient(settings)
        await catalog_client.start()

        enrichment = EnrichmentCache(
            TitleCacheStore(redis_conn),
            catalog_client,
            region=settings.catalog_region,
            stale_after=timedelta(days=settings.enrichment_stale_days),
            timeout=settings.catalog_timeout_seconds,
            max_concurrency=settings.enrichment_concurrency,
        )
        app.state.orchestrator = FeedOrchestrator(
            membership=MembershipResolver(sessionmaker),
            posts=PostStore(sessionmaker),
            engagement=EngagementAggregator(sessionmaker),
            enrichment=enrichment,
            settings=settings,
        )

        logger.info("All services connected. API ready.")
        yield

        logger.info("Shutting down...")
        await catalog_client.stop()
        if redis is None:
            await redis_conn.aclose()
        await engine.dispose()

    app = FastAPI(
        title="Circle Feed API",
        description=(
            "Deduplicated, ranked timeline of ratings and comments "
            "from the circles a viewer belongs to."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # ── Routers ────────────────────────────────────────────────────────────
    app.include_router(feed.router, prefix="/feed", tags=["Feed"])

    # ── Prometheus metrics endpoint ────────────────────────────────────────
    app.mount("/metrics", make_asgi_app())

    # ── OTel FastAPI instrumentation ──────────────────────────────────────
    if settings.otel_enabled:
        instrument_app(app)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": settings.service_name}

    return app


app = create_app()

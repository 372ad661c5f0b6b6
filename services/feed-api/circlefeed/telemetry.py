"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics: feed latency, outcomes, candidate volume,
    enrichment cache behaviour

Both are initialised once at startup and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from fastapi import FastAPI
from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import AsyncEngine

from circlefeed.config import Settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "End-to-end latency of GET /feed",
    ["sort"],  # 'latest' or 'smart'
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

FEED_REQUESTS_TOTAL = Counter(
    "feed_requests_total",
    "Feed requests by outcome",
    ["outcome"],  # 'ok' | 'empty' | 'degraded'
)

FEED_CANDIDATES_TOTAL = Counter(
    "feed_candidates_total",
    "Candidate posts per feed request",
    ["stage"],  # 'fetched' (raw posts) or 'merged' (after dedup)
)

ENRICHMENT_LOOKUPS_TOTAL = Counter(
    "enrichment_lookups_total",
    "Title enrichment lookups by how they were served",
    ["outcome"],  # 'cache_hit' | 'refreshed' | 'stale_fallback' | 'placeholder'
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
_tracing_configured = False


def setup_tracing(settings: Settings) -> None:
    """
    Install the global TracerProvider (OTLP → Jaeger) and instrument the
    outbound clients: TMDb calls via httpx and title-cache reads via redis.
    Safe to call more than once; only the first call takes effect.
    """
    global _tracing_configured
    if _tracing_configured:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    try:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint)
    except Exception as exc:
        logger.warning("OTLP exporter unavailable (%s) — spans will not be exported", exc)

    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument()
    RedisInstrumentor().instrument()
    _tracing_configured = True


def instrument_engine(engine: AsyncEngine) -> None:
    """Add a span per SQL statement issued through `engine`."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def instrument_app(app: FastAPI) -> None:
    """Call after app is created to add FastAPI request spans."""
    FastAPIInstrumentor.instrument_app(app)

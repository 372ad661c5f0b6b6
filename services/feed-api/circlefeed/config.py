"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database (TiDB / MySQL-protocol, aiomysql driver) ──────────────────
    database_url: str = "mysql+aiomysql://root:@tidb:4000/circlefeed"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # ── Redis (enrichment record store) ────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379

    # ── External catalog (TMDb) ────────────────────────────────────────────
    tmdb_api_url: str = "https://api.themoviedb.org/3"
    tmdb_api_key: str = ""
    tmdb_image_base_url: str = "https://image.tmdb.org/t/p/w500"
    catalog_timeout_seconds: float = 3.0
    catalog_region: str = "US"

    # ── Enrichment cache ───────────────────────────────────────────────────
    enrichment_stale_days: int = 7        # older records are refetched
    enrichment_concurrency: int = 8       # max in-flight catalog lookups per request

    # ── Feed ───────────────────────────────────────────────────────────────
    feed_default_limit: int = 20
    feed_max_limit: int = 50
    feed_ranked_window_factor: int = 3    # ranked mode reads limit * factor rows
    feed_ranked_window_cap: int = 150
    engagement_window_days: int = 14
    recency_tau_hours: float = 72.0

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "feed-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

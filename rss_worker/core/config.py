from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "rss-worker"
    api_key: str = "rss-worker-key"
    poll_interval_seconds: float = 2.0
    max_backoff_seconds: float = 15.0
    poll_batch_size: int = 25
    claim_lease_seconds: int = 300
    lease_reaper_interval_seconds: float = 15.0
    lease_reaper_batch_size: int = 100
    job_concurrency: int = 100
    upsert_concurrency: int = 20
    stream_base_url: str = "http://localhost:8100"
    stream_api_key: str = "local-stream-key"
    stream_namespace: str = "rss"
    stream_chunk_size: int = 100
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    feed_fetch_timeout_seconds: float = 20.0
    feed_user_agent: str = "rss-worker/1.0"
    otel_enabled: bool = True
    otel_service_name: str = "rss-worker"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="RSS_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()

"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Hive Conversation Analysis API"
    database_url: str = "sqlite+aiosqlite:///./data/hive_analysis.db"
    log_level: str = "INFO"

    openai_api_key: SecretStr | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    openai_embedding_fallback_model: str = "text-embedding-3-small"
    openai_chat_model: str = "gpt-4o-mini"
    synthesis_prompt_version: str = "v1.0"
    embedding_batch_size: int = 100
    external_retry_attempts: int = 5

    analysis_min_responses: int = 20
    incremental_threshold: int = 10
    queued_job_ttl_minutes: int = 60
    running_job_ttl_minutes: int = 30
    job_lock_ttl_minutes: int = 30

    similarity_threshold: float = 0.80
    similarity_min_group_size: int = 2
    similarity_large_cluster_warning: int = 300
    similarity_algorithm_version: str = "v1.1"

    theme_sample_size: int = 20
    cluster_min_size: int = 3
    cluster_max_clusters: int = 12
    cluster_floor_small: int = 3
    cluster_floor_large: int = 5
    cluster_floor_large_above: int = 40
    cluster_forced_min_size: int = 2
    outlier_z_threshold: float = 3.5
    outlier_min_cluster_size: int = 6
    outlier_max_ratio: float = 0.20
    projection_seed: int = 42
    umap_n_neighbors: int = 15
    umap_min_dist: float = 0.1

    consensus_min_votes: int = 5
    consensus_max_per_type: int = 5

    realtime_url: str | None = None
    realtime_api_key: SecretStr | None = None
    realtime_timeout_seconds: float = 5.0

    worker_poll_interval_seconds: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()

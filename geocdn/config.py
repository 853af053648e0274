from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    # Durable key-value store
    kv_backend: str = "redis"  # "redis" or "memory"
    redis_url: str = "redis://localhost:6393"
    memory_store_maxsize: Optional[int] = None  # unbounded when unset
    regions_key: str = "cdn:regions"

    # Object store
    object_backend: str = "file"  # "file" or "memory"
    object_store_path: str = "./data/objects"

    # Health checks
    health_checks_enabled: bool = True
    health_check_path: str = "/health"
    health_check_timeout: float = 5.0  # seconds
    health_check_interval: int = 30  # seconds
    health_check_concurrency: int = 1
    failure_threshold: int = 3
    failure_latency_ms: float = 9999.0

    # Routing
    default_country: str = "US"
    legacy_geo_reason: bool = False
    load_presets: bool = True

    # Replication
    replication_workers: int = 2
    replication_ttl: int = 86400 * 7  # 7 days
    replication_retained_jobs: int = 1000  # finished jobs kept in memory

    # Cache
    cache_ttl: int = 3600

    # Application
    log_level: str = "INFO"
    enable_metrics: bool = True

    model_config = ConfigDict(env_file=".env", env_prefix="GEOCDN_")

settings = Settings()

from __future__ import annotations

from uuid import uuid4

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_ENVIRONMENTS = frozenset({"dev", "local", "development"})


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LANEQ_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "laneq"
    env: str = "dev"

    # Instance ID for distributed deployments
    instance_id: str = Field(default_factory=lambda: str(uuid4())[:8])

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # Key space: "{namespace}:{lane}:..." (namespace defaults to "{env}:{mq}")
    namespace: str | None = None
    lane: str | None = None

    # Producer-only mode (scripts, migrations): no worker, no scheduler
    script: bool = Field(default=False, validation_alias="SCRIPT")

    # Module exposing the `jobs` and `crons` registration lists
    tasks_module: str | None = None

    # Worker pool
    concurrency: int = 50
    poll_interval: float = 1.0
    claim_timeout: int = 1
    shutdown_grace: float = 30.0

    # Default retry policy
    default_attempts: int = 3
    backoff_type: str = "exponential"
    backoff_delay: int = 1000  # milliseconds
    backoff_jitter: float = 0.0

    # Leases and stalled job recovery
    lease_timeout: float = 30.0
    stalled_interval: float = 30.0
    max_stalled_count: int = 1

    # Retention
    remove_on_complete: bool = True
    remove_on_fail: bool = True
    job_ttl: int = 86400 * 7  # 7 days
    result_ttl: int = 86400  # 24 hours

    # Cron scheduler
    cron_check_interval: float = 10.0

    # Observability
    telemetry_queue_size: int = 1000
    enable_tracing: bool = Field(default=True, validation_alias="ENABLE_TRACING")
    otlp_endpoint: str | None = Field(default=None, validation_alias="OTLP_ENDPOINT")
    enable_metrics: bool = Field(default=True, validation_alias="ENABLE_METRICS")
    metrics_port: int | None = None
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def is_dev(self) -> bool:
        return self.env.lower() in DEV_ENVIRONMENTS

    @property
    def key_prefix(self) -> str:
        """Backend key prefix shared by every lane of this deployment."""
        return self.namespace or f"{self.env}:{{mq}}"


settings = Settings()

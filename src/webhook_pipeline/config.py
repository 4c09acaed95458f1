from pydantic import SecretStr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    webhook_secret: SecretStr = SecretStr("")
    max_attempts: int = 5
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 3600.0
    worker_count: int = 4
    poll_interval: float = 0.5
    handler_timeout: float = 30.0
    # a running job untouched this long is presumed lost
    stale_running_after: float = 300.0
    reap_interval: float = 60.0
    ingest_timeout: float = 4.0
    retention_days: int = 30
    cleanup_interval_hours: int = 1
    db_path: str = "/data/jobs.db"
    db_busy_timeout_ms: int = 5000
    internal_api_url: str | None = None
    alert_webhook_url: str | None = None
    http_timeout: float = 10.0
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    @property
    def secret_bytes(self) -> bytes:
        return self.webhook_secret.get_secret_value().encode("utf-8")

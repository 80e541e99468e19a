"""
Application Configuration using Pydantic Settings

Loads configuration from environment variables with sensible defaults.
"""

from typing import Annotated, List
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ========================================================================
    # Stream Tester (harness) Settings
    # ========================================================================
    # host:port of the stream-tester server; requests go to http://<address>
    HARNESS_ADDRESS: str = "localhost:3001"
    HARNESS_TIMEOUT_SECONDS: float = 8.0
    # Newer stream-tester revisions only return raw latencies when asked.
    HARNESS_REQUEST_LATENCIES: bool = True

    # ========================================================================
    # Default Run Configuration
    # ========================================================================
    BROADCASTER_HOST: str = "localhost"
    RTMP_PORT: int = 1935
    MEDIA_PORT: int = 8935
    # File must be present in the root directory of stream-tester
    FILE_NAME: str = "bbb_sunflower_1080p_30fps_normal_t02.mp4"
    REPEAT: int = 1
    SIMULTANEOUS: int = 2
    PROFILES_NUM: int = 3

    # ========================================================================
    # Scheduling Settings
    # ========================================================================
    SCHEDULE_ENABLED: bool = True
    STREAM_INTERVAL_SECONDS: float = 3600.0
    # Give the broadcaster time to come up before the first batch.
    SCHEDULE_START_DELAY_SECONDS: float = 60.0

    # ========================================================================
    # Stats Polling Settings
    # ========================================================================
    POLL_INTERVAL_SECONDS: float = 30.0
    # 0 keeps polling until the harness reports the run finished.
    POLL_MAX_ATTEMPTS: int = 0
    CANCEL_POLLS_ON_SHUTDOWN: bool = True
    SHUTDOWN_TIMEOUT_SECONDS: float = 5.0

    # ========================================================================
    # Storage Settings
    # ========================================================================
    # "postgres" persists stats durably, "memory" keeps them for the process lifetime.
    RESULTS_BACKEND: str = "postgres"
    RESULTS_TABLE: str = "stats"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DATABASE: str = "streamsender"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_POOL_MIN_SIZE: int = 1
    POSTGRES_POOL_MAX_SIZE: int = 5

    # ========================================================================
    # Application Settings
    # ========================================================================
    APP_HOST: str = "localhost"
    APP_PORT: int = 5000
    APP_RELOAD: bool = False

    # The dashboard is served from a different origin, so allow everything by default.
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["*"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _build_cors_origins(cls, v):
        if isinstance(v, str):
            if v.strip().startswith("["):
                import json

                return json.loads(v)
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("RESULTS_BACKEND")
    @classmethod
    def _normalize_backend(cls, v: str) -> str:
        backend = str(v or "").strip().lower()
        if backend not in {"postgres", "memory"}:
            raise ValueError(f"Unsupported RESULTS_BACKEND: {v!r}")
        return backend

    # ========================================================================
    # Logging Settings
    # ========================================================================
    LOG_LEVEL: str = "INFO"


# Create global settings instance
settings = Settings()


def default_run_config():
    """Build the initial run configuration from settings."""
    from streamsender.models import RunConfig

    return RunConfig(
        host=settings.BROADCASTER_HOST,
        rtmp=settings.RTMP_PORT,
        media=settings.MEDIA_PORT,
        file_name=settings.FILE_NAME,
        repeat=settings.REPEAT,
        simultaneous=settings.SIMULTANEOUS,
        profiles_num=settings.PROFILES_NUM,
        do_not_clear_stats=False,
    )

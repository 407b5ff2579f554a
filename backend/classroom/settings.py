"""Settings for the classroom sync backend and client."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
    secret_key: str = _env_field(..., "SECRET_KEY")

    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_metrics_public: bool = _env_field(False, "OBS_METRICS_PUBLIC")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(0.1, "LOG_SAMPLING_RATE_INFO")
    obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")
    service_name: str = _env_field("classroom-sync", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")
    cors_allow_origins: Any = _env_field((), "CORS_ALLOW_ORIGINS")

    # Real-time sync tuning
    draw_throttle_ms: int = _env_field(33, "DRAW_THROTTLE_MS")
    video_heartbeat_seconds: float = _env_field(7.0, "VIDEO_HEARTBEAT_SECONDS")
    video_drift_tolerance_seconds: float = _env_field(0.7, "VIDEO_DRIFT_TOLERANCE_SECONDS")
    video_echo_suppress_seconds: float = _env_field(1.0, "VIDEO_ECHO_SUPPRESS_SECONDS")
    # Zone entries beyond this are trimmed from the session log, oldest first.
    # Chat and lesson entries are never trimmed.
    session_log_max_zone_entries: int = _env_field(2_000, "SESSION_LOG_MAX_ZONE_ENTRIES")
    chat_rate_per_minute: int = _env_field(60, "CHAT_RATE_PER_MINUTE")
    zone_rate_per_minute: int = _env_field(600, "ZONE_RATE_PER_MINUTE")
    socket_ticket_ttl_seconds: int = _env_field(60, "SOCKET_TICKET_TTL_SECONDS")

    # Client-side resilience snapshot
    snapshot_debounce_ms: int = _env_field(500, "SNAPSHOT_DEBOUNCE_MS")
    snapshot_quota_bytes: int = _env_field(5 * 1024 * 1024, "SNAPSHOT_QUOTA_BYTES")

    # External lesson-content read API
    lesson_api_base_url: str = _env_field("http://localhost:8000", "LESSON_API_BASE_URL")
    lesson_api_timeout_seconds: float = _env_field(5.0, "LESSON_API_TIMEOUT_SECONDS")

    # Environment helpers
    def is_prod(self) -> bool:
        return self.environment.lower() in ("prod", "production", "live")

    def is_dev(self) -> bool:
        return self.environment.lower() in ("dev", "development")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("cors_allow_origins", mode="before")
    def _split_cors(cls, value):  # type: ignore[override]
        if value in (None, ""):
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        if isinstance(value, (list, tuple, set)):
            return tuple(str(item).strip() for item in value if str(item).strip())
        return ()


def _normalise_level(level: str) -> str:
    return level.upper()


settings = Settings()
settings.obs_log_level = _normalise_level(settings.obs_log_level)

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_app_root() -> Path:
    """
    Default application root.

      - Docker: /app
      - Local/dev: current working directory
    """
    env = os.environ.get("APP_ROOT")
    if env:
        return Path(env).resolve()
    if Path("/app").exists():
        return Path("/app").resolve()
    return Path.cwd().resolve()


class PublicConfig(BaseSettings):
    """
    Non-sensitive config with safe defaults.

    Loaded from (in order):
      - process env
      - optional `.env` file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- core paths ---
    app_root: Path = Field(default_factory=_default_app_root, alias="APP_ROOT")
    data_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "data").resolve(), alias="STUDIO_DATA_DIR"
    )
    log_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "logs").resolve(), alias="STUDIO_LOG_DIR"
    )

    # --- logging ---
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=3, alias="LOG_BACKUP_COUNT")

    # --- web server ---
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    cors_origins: str = Field(default="", alias="CORS_ORIGINS")

    # Cookies get the Secure flag when the request is HTTPS; this forces it on.
    cookie_secure: bool = Field(default=False, alias="COOKIE_SECURE")

    # --- sessions ---
    session_validity_sec: int = Field(default=60 * 60, alias="SESSION_VALIDITY_SEC")
    session_idle_timeout_sec: int = Field(default=30 * 60, alias="SESSION_IDLE_TIMEOUT_SEC")
    session_sweep_interval_sec: float = Field(default=5 * 60, alias="SESSION_SWEEP_INTERVAL_SEC")
    # strict|ip|user_agent|off (strict rejects any IP or User-Agent change)
    session_binding: str = Field(default="strict", alias="SESSION_BINDING")

    # --- csrf ---
    csrf_token_ttl_sec: int = Field(default=60 * 60, alias="CSRF_TOKEN_TTL_SEC")
    csrf_sweep_interval_sec: float = Field(default=5 * 60, alias="CSRF_SWEEP_INTERVAL_SEC")

    # --- rate limiting ---
    rate_limit_sweep_interval_sec: float = Field(default=60, alias="RATE_LIMIT_SWEEP_INTERVAL_SEC")
    login_rate_limit: int = Field(default=5, alias="LOGIN_RATE_LIMIT")
    login_rate_window_sec: float = Field(default=60, alias="LOGIN_RATE_WINDOW_SEC")

    # --- audit log ---
    audit_backend: str = Field(default="auto", alias="AUDIT_BACKEND")  # auto|local|s3
    audit_log_filename: str = Field(default="audit-log.json", alias="AUDIT_LOG_FILENAME")
    audit_max_entries: int = Field(default=10000, alias="AUDIT_MAX_ENTRIES")

    # --- object storage (S3-compatible; credentials live in SecretConfig) ---
    s3_endpoint: str | None = Field(default=None, alias="S3_ENDPOINT")
    s3_region: str = Field(default="eu-central", alias="S3_REGION")
    s3_bucket: str | None = Field(default=None, alias="S3_BUCKET")
    s3_prefix: str = Field(default="studio/", alias="S3_PREFIX")

    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in (self.cors_origins or "").split(",") if o.strip()]

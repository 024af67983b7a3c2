from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "holeinone-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Official Hole in 1")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/holeinone_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Public origins: the player-facing app (magic links) and this API (witness links)
    app_base_url: str = os.getenv("APP_BASE_URL", "http://localhost:5173")
    public_api_url: str = os.getenv("PUBLIC_API_URL", "http://localhost:8000")
    allowed_redirect_origins: list[str] = [
        o for o in os.getenv("ALLOWED_REDIRECT_ORIGINS", "").split(",") if o
    ]

    # Email (Resend). Without an API key messages are only logged.
    resend_api_key: str = os.getenv("RESEND_API_KEY", "")
    email_from: str = os.getenv("EMAIL_FROM", "Official Hole in 1 <entry@holein1.test>")
    claims_email_from: str = os.getenv("CLAIMS_EMAIL_FROM", "Official Hole in 1 <claims@holein1.test>")
    support_email: str = os.getenv("SUPPORT_EMAIL", "support@holein1.test")
    # Adjudicators are told about new claims here; empty disables the notice
    claims_notify_email: str = os.getenv("CLAIMS_NOTIFY_EMAIL", "")
    email_timeout_seconds: float = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))

    # Magic link lifetimes per issuance flow
    otp_link_ttl_minutes: int = int(os.getenv("OTP_LINK_TTL_MINUTES", "15"))
    secure_link_ttl_minutes: int = int(os.getenv("SECURE_LINK_TTL_MINUTES", "15"))
    branded_link_ttl_minutes: int = int(os.getenv("BRANDED_LINK_TTL_MINUTES", "360"))  # 6h

    # Witness confirmation
    witness_ttl_hours: int = int(os.getenv("WITNESS_TTL_HOURS", "48"))

    # Attempt window / auto-miss
    attempt_window_minutes: int = int(os.getenv("ATTEMPT_WINDOW_MINUTES", "15"))
    auto_miss_tick_seconds: float = float(os.getenv("AUTO_MISS_TICK_SECONDS", "1.0"))
    auto_miss_batch_size: int = int(os.getenv("AUTO_MISS_BATCH_SIZE", "100"))
    auto_miss_scheduler: str = os.getenv("AUTO_MISS_SCHEDULER", "rq")  # rq|none

    # Advisory throttling
    rate_limit_backend: str = os.getenv("RATE_LIMIT_BACKEND", "memory")  # memory|redis
    magic_link_rate_limit: int = int(os.getenv("MAGIC_LINK_RATE_LIMIT", "5"))
    magic_link_rate_window_seconds: int = int(os.getenv("MAGIC_LINK_RATE_WINDOW_SECONDS", "60"))
    resend_cooldown_seconds: int = int(os.getenv("RESEND_COOLDOWN_SECONDS", "60"))
    max_resend_attempts: int = int(os.getenv("MAX_RESEND_ATTEMPTS", "5"))
    resend_window_seconds: int = int(os.getenv("RESEND_WINDOW_SECONDS", "300"))

    def redirect_origins(self) -> list[str]:
        if self.allowed_redirect_origins:
            return [o.rstrip("/") for o in self.allowed_redirect_origins]
        return [self.app_base_url.rstrip("/")]

settings = Settings()

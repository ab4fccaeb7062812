from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str = "") -> str:
    # Centralize env access so casting and validation stay in one place
    return os.environ.get(name, default).strip()


def _optional(name: str) -> str | None:
    return _getenv(name) or None


def _int_env(name: str, default: str) -> int:
    raw = _getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    base_url: str

    # Identity provider (Clerk)
    clerk_secret_key: str | None = None
    clerk_webhook_secret: str | None = None
    clerk_jwt_key: str | None = None

    # Record store (Sanity)
    sanity_project_id: str | None = None
    sanity_dataset: str = "production"
    sanity_api_token: str | None = None
    sanity_api_version: str = "2024-01-01"

    # Payment provider (Stripe)
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None

    # Transactional email (Resend)
    resend_api_key: str | None = None
    from_email: str = "noreply@example.com"

    webhook_ledger_ttl_seconds: int = 7 * 24 * 3600

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    port = _int_env("PORT", "8000")
    ledger_ttl = _int_env("WEBHOOK_LEDGER_TTL_SECONDS", str(7 * 24 * 3600))
    if ledger_ttl <= 0:
        raise ValueError(
            f"WEBHOOK_LEDGER_TTL_SECONDS must be positive (got {ledger_ttl})"
        )

    base_url = _getenv("BASE_URL", "http://localhost:3000").rstrip("/")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        redis_url=_optional("REDIS_URL"),
        base_url=base_url,
        clerk_secret_key=_optional("CLERK_SECRET_KEY"),
        clerk_webhook_secret=_optional("CLERK_WEBHOOK_SECRET"),
        clerk_jwt_key=_optional("CLERK_JWT_KEY"),
        sanity_project_id=_optional("SANITY_PROJECT_ID"),
        sanity_dataset=_getenv("SANITY_DATASET", "production"),
        sanity_api_token=_optional("SANITY_API_TOKEN"),
        sanity_api_version=_getenv("SANITY_API_VERSION", "2024-01-01"),
        stripe_secret_key=_optional("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=_optional("STRIPE_WEBHOOK_SECRET"),
        resend_api_key=_optional("RESEND_API_KEY"),
        from_email=_getenv("FROM_EMAIL", "noreply@example.com"),
        webhook_ledger_ttl_seconds=ledger_ttl,
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()

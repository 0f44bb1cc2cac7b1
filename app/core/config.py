from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off", "")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getbool(name: str, default: str = "false") -> bool:
    raw = _getenv(name, default).lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def _getint(name: str, default: str) -> int:
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
    database_url: str | None
    redis_url: str | None
    frontend_url: str = "http://localhost:5173"
    trial_days: int = 14
    cookie_secure: bool = False
    stripe_api_key: str | None = None
    stripe_webhook_secret: str | None = None
    # "<plan>:<cycle>" -> Stripe price id, e.g. "professional:monthly"
    stripe_prices: dict[str, str] = field(default_factory=dict)
    email_from: str = "Teamspace <no-reply@teamspace.local>"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    rate_limit_window_ms: int = 900_000
    rate_limit_max_requests: int = 100

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.stripe_api_key)

    @property
    def rate_limit_enabled(self) -> bool:
        return self.rate_limit_max_requests > 0

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)


_PAID_PLANS = ("professional", "business", "enterprise")
_CYCLES = ("monthly", "annual")


def _load_stripe_prices() -> dict[str, str]:
    prices: dict[str, str] = {}
    for plan in _PAID_PLANS:
        for cycle in _CYCLES:
            value = _getenv(f"STRIPE_PRICE_{plan.upper()}_{cycle.upper()}", "")
            if value:
                prices[f"{plan}:{cycle}"] = value
    return prices


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getint("PORT", "8000")
    trial_days = _getint("TRIAL_DAYS", "14")
    if trial_days <= 0:
        raise ValueError(f"TRIAL_DAYS must be positive (got {trial_days})")
    rate_limit_window_ms = _getint("RATE_LIMIT_WINDOW_MS", "900000")
    if rate_limit_window_ms <= 0:
        raise ValueError(
            f"RATE_LIMIT_WINDOW_MS must be positive (got {rate_limit_window_ms})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        frontend_url=_getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/"),
        trial_days=trial_days,
        cookie_secure=_getbool("COOKIE_SECURE"),
        stripe_api_key=_getenv("STRIPE_API_KEY", "") or None,
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", "") or None,
        stripe_prices=_load_stripe_prices(),
        email_from=_getenv("EMAIL_FROM", "Teamspace <no-reply@teamspace.local>"),
        smtp_host=_getenv("SMTP_HOST", "") or None,
        smtp_port=_getint("SMTP_PORT", "587"),
        smtp_user=_getenv("SMTP_USER", "") or None,
        smtp_password=_getenv("SMTP_PASSWORD", "") or None,
        rate_limit_window_ms=rate_limit_window_ms,
        rate_limit_max_requests=_getint("RATE_LIMIT_MAX_REQUESTS", "100"),
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()

from __future__ import annotations

import pytest

from app.core.config import Settings, load_settings

_OPTIONAL = (
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_JSON",
    "TRIAL_DAYS",
    "COOKIE_SECURE",
    "STRIPE_API_KEY",
    "RATE_LIMIT_WINDOW_MS",
    "RATE_LIMIT_MAX_REQUESTS",
    "FRONTEND_URL",
    "SMTP_HOST",
    "SMTP_USER",
    "SMTP_PASSWORD",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _OPTIONAL:
        monkeypatch.delenv(name, raising=False)


# ---- defaults ----


def test_load_settings_defaults() -> None:
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.trial_days == 14
    assert settings.cookie_secure is False
    assert settings.rate_limit_max_requests == 100
    assert settings.rate_limit_window_ms == 900_000
    assert settings.stripe_enabled is False
    assert settings.smtp_enabled is False


def test_load_settings_normalizes_case_and_whitespace(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "  PROD ")
    monkeypatch.setenv("LOG_LEVEL", "Warning")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "warning"
    assert settings.is_prod is True


def test_frontend_url_trailing_slash_is_dropped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FRONTEND_URL", "https://app.example.com/")
    assert load_settings().frontend_url == "https://app.example.com"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("TRUE", True), ("on", True), ("0", False), ("no", False)],
)
def test_boolean_flags(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("COOKIE_SECURE", raw)
    assert load_settings().cookie_secure is expected


# ---- invalid values ----


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("APP_ENV", "staging", "APP_ENV must be dev|test|prod"),
        ("LOG_LEVEL", "verbose", "LOG_LEVEL must be debug|info|warning|error"),
        ("LOG_JSON", "maybe", "LOG_JSON must be a boolean"),
        ("TRIAL_DAYS", "two weeks", "TRIAL_DAYS must be an integer"),
        ("TRIAL_DAYS", "0", "TRIAL_DAYS must be positive"),
        ("RATE_LIMIT_WINDOW_MS", "-5", "RATE_LIMIT_WINDOW_MS must be positive"),
    ],
    ids=["app-env", "log-level", "bool", "int", "trial-zero", "window-negative"],
)
def test_invalid_values_fail_fast(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=message):
        load_settings()


# ---- integrations ----


def test_stripe_prices_are_keyed_by_plan_and_cycle(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STRIPE_API_KEY", "sk_test_x")
    monkeypatch.setenv("STRIPE_PRICE_PROFESSIONAL_MONTHLY", "price_a")
    monkeypatch.setenv("STRIPE_PRICE_ENTERPRISE_ANNUAL", "price_b")
    settings = load_settings()
    assert settings.stripe_enabled is True
    assert settings.stripe_prices == {
        "professional:monthly": "price_a",
        "enterprise:annual": "price_b",
    }


def test_zero_max_requests_disables_rate_limiting(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "0")
    assert load_settings().rate_limit_enabled is False


def test_smtp_needs_host_and_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    assert load_settings().smtp_enabled is False
    monkeypatch.setenv("SMTP_USER", "mailer")
    monkeypatch.setenv("SMTP_PASSWORD", "pw")
    assert load_settings().smtp_enabled is True


def test_settings_is_frozen() -> None:
    settings: Settings = load_settings()
    with pytest.raises(AttributeError):
        settings.trial_days = 30  # type: ignore[misc]

import pytest

from app.portal.config import ConfigError, load_settings

REQUIRED = {
    "JWT_SECRET": "jwt-secret",
    "STRIPE_SECRET_KEY": "sk_test_dummy",
    "STRIPE_WEBHOOK_SECRET": "whsec_dummy",
}


@pytest.fixture()
def env(monkeypatch):
    for name in (
        "ENV",
        "DATABASE_URL",
        "SECRET_KEY",
        "ALLOWED_ORIGINS",
        "EMAIL_USER",
        "EMAIL_PASS",
        "ADMIN_EMAIL",
        "ADMIN_PASSWORD",
        "CAPTCHA_BACKEND",
        "EMAIL_PORT",
        "AFFILIATION_PRICE_CENTS",
        "TRUSTED_PROXY_HOPS",
        "RATELIMIT_STORAGE_URI",
        *REQUIRED,
    ):
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env):
    s = load_settings()
    assert s.env == "development"
    assert not s.is_production
    assert s.affiliation_price_cents == 1500
    assert s.course_price_external_cents == 16000
    assert s.captcha_backend == "database"
    assert s.trusted_proxy_hops == 0
    assert s.ratelimit_storage_uri == "memory://"
    assert s.allowed_origins == ()


def test_missing_required_variables_are_listed(env):
    env.delenv("JWT_SECRET")
    env.delenv("STRIPE_WEBHOOK_SECRET")
    with pytest.raises(ConfigError) as exc:
        load_settings()
    assert "JWT_SECRET" in str(exc.value)
    assert "STRIPE_WEBHOOK_SECRET" in str(exc.value)


def test_malformed_integer(env):
    env.setenv("EMAIL_PORT", "smtp")
    env.setenv("AFFILIATION_PRICE_CENTS", "15.00")
    with pytest.raises(ConfigError) as exc:
        load_settings()
    assert "EMAIL_PORT must be an integer" in str(exc.value)
    assert "AFFILIATION_PRICE_CENTS must be an integer" in str(exc.value)


def test_production_requires_hardening(env):
    env.setenv("ENV", "production")
    with pytest.raises(ConfigError) as exc:
        load_settings()
    message = str(exc.value)
    for name in ("ALLOWED_ORIGINS", "EMAIL_USER", "EMAIL_PASS", "ADMIN_EMAIL", "ADMIN_PASSWORD"):
        assert name in message
    assert "SECRET_KEY" in message
    assert "DATABASE_URL must be Postgres" in message


def test_allowed_origins_are_split(env):
    env.setenv("ALLOWED_ORIGINS", "https://ugt.example.org, https://www.ugt.example.org ,")
    assert load_settings().allowed_origins == ("https://ugt.example.org", "https://www.ugt.example.org")


def test_unknown_captcha_backend(env):
    env.setenv("CAPTCHA_BACKEND", "redis")
    with pytest.raises(ConfigError):
        load_settings()


def test_negative_proxy_hops(env):
    env.setenv("TRUSTED_PROXY_HOPS", "-1")
    with pytest.raises(ConfigError) as exc:
        load_settings()
    assert "TRUSTED_PROXY_HOPS must not be negative" in str(exc.value)

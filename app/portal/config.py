import os
from dataclasses import dataclass


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    jwt_secret: str
    jwt_access_ttl_hours: int
    jwt_refresh_ttl_days: int

    stripe_secret_key: str
    stripe_webhook_secret: str
    success_url: str
    cancel_url: str
    affiliation_price_cents: int
    course_price_member_cents: int
    course_price_external_cents: int

    allowed_origins: tuple[str, ...]

    email_host: str
    email_port: int
    email_secure: bool
    email_user: str
    email_pass: str
    email_from: str
    admin_notify_email: str

    admin_email: str
    admin_password: str

    captcha_backend: str

    trusted_proxy_hops: int
    ratelimit_storage_uri: str

    @property
    def is_production(self) -> bool:
        return self.env in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int, problems: list[str]) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        problems.append(f"{name} must be an integer (got {raw!r})")
        return default


def _getbool(name: str, default: bool = False) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """
    Read and validate the environment once. Every problem is collected and reported
    in a single ConfigError so a broken deploy shows all missing values at once.
    """
    problems: list[str] = []
    env = _getenv("ENV", "development").lower()

    s = Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        jwt_secret=_getenv("JWT_SECRET"),
        jwt_access_ttl_hours=_getint("JWT_ACCESS_TTL_HOURS", 24 * 7, problems),
        jwt_refresh_ttl_days=_getint("JWT_REFRESH_TTL_DAYS", 30, problems),
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET"),
        success_url=_getenv("SUCCESS_URL", "http://localhost:3000/success.html"),
        cancel_url=_getenv("CANCEL_URL", "http://localhost:3000/cancel.html"),
        affiliation_price_cents=_getint("AFFILIATION_PRICE_CENTS", 1500, problems),
        course_price_member_cents=_getint("COURSE_PRICE_MEMBER_CENTS", 1500, problems),
        course_price_external_cents=_getint("COURSE_PRICE_EXTERNAL_CENTS", 16000, problems),
        allowed_origins=tuple(o.strip() for o in _getenv("ALLOWED_ORIGINS").split(",") if o.strip()),
        email_host=_getenv("EMAIL_HOST", "smtp.gmail.com"),
        email_port=_getint("EMAIL_PORT", 587, problems),
        email_secure=_getbool("EMAIL_SECURE"),
        email_user=_getenv("EMAIL_USER"),
        email_pass=_getenv("EMAIL_PASS"),
        email_from=_getenv("EMAIL_FROM"),
        admin_notify_email=_getenv("ADMIN_NOTIFY_EMAIL"),
        admin_email=_getenv("ADMIN_EMAIL").lower(),
        admin_password=_getenv("ADMIN_PASSWORD"),
        captcha_backend=_getenv("CAPTCHA_BACKEND", "database").lower(),
        trusted_proxy_hops=_getint("TRUSTED_PROXY_HOPS", 0, problems),
        ratelimit_storage_uri=_getenv("RATELIMIT_STORAGE_URI", "memory://"),
    )

    required = ["JWT_SECRET", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"]
    if s.is_production:
        required += ["ALLOWED_ORIGINS", "EMAIL_USER", "EMAIL_PASS", "ADMIN_EMAIL", "ADMIN_PASSWORD"]
        if s.secret_key in ("", "change-me"):
            problems.append("SECRET_KEY must be set to a strong value in production (not default).")
        if s.database_url.startswith("sqlite"):
            problems.append("DATABASE_URL must be Postgres in production (not sqlite).")
    missing = [name for name in required if not _getenv(name)]
    if missing:
        problems.insert(0, "Missing required environment variables: " + ", ".join(missing))

    if s.captcha_backend not in ("database", "memory"):
        problems.append(f"CAPTCHA_BACKEND must be 'database' or 'memory' (got {s.captcha_backend!r})")
    if s.trusted_proxy_hops < 0:
        problems.append(f"TRUSTED_PROXY_HOPS must not be negative (got {s.trusted_proxy_hops})")

    if problems:
        raise ConfigError("; ".join(problems))
    return s


def load_config() -> dict:
    s = load_settings()
    return {
        "SETTINGS": s,
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "JWT_SECRET": s.jwt_secret,
        "STRIPE_SECRET_KEY": s.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": s.stripe_webhook_secret,
        "CAPTCHA_BACKEND": s.captcha_backend,
        "RATELIMIT_STORAGE_URI": s.ratelimit_storage_uri,
        "RATELIMIT_HEADERS_ENABLED": True,
        # base64 profile photos can reach ~2.7MB
        "MAX_CONTENT_LENGTH": 5 * 1024 * 1024,
    }


def get_settings() -> Settings:
    from flask import current_app

    return current_app.config["SETTINGS"]

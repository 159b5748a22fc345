"""Application configuration."""

from os import getenv

from pydantic import BaseModel


def _split_codes(raw: str) -> frozenset[str]:
    return frozenset(code.strip().upper() for code in raw.split(",") if code.strip())


class Settings(BaseModel):
    """Runtime settings for the application."""

    app_name: str = "Mizan API"
    app_env: str = getenv("APP_ENV", "dev")
    database_url: str = getenv("DATABASE_URL", "sqlite:///./mizan.db")
    jwt_secret_key: str = getenv("JWT_SECRET_KEY", "dev-only-change-me-to-a-long-random-secret")
    jwt_algorithm: str = getenv("JWT_ALGORITHM", "HS256")
    jwt_expire_minutes: int = int(getenv("JWT_EXPIRE_MINUTES", str(60 * 24 * 30)))
    identity_token_key: str = getenv("IDENTITY_TOKEN_KEY", "dev-identity-provider-secret")
    identity_token_algorithm: str = getenv("IDENTITY_TOKEN_ALGORITHM", "HS256")
    identity_token_issuer: str | None = getenv("IDENTITY_TOKEN_ISSUER") or None
    payment_webhook_secret: str = getenv("PAYMENT_WEBHOOK_SECRET", "")
    payment_webhook_tolerance_seconds: int = int(getenv("PAYMENT_WEBHOOK_TOLERANCE_SECONDS", "300"))
    premium_codes: frozenset[str] = _split_codes(getenv("PREMIUM_CODES", ""))
    redeemable_code_days: int = int(getenv("REDEEMABLE_CODE_DAYS", "365"))
    bootstrap_super_admin_subject: str | None = getenv("BOOTSTRAP_SUPER_ADMIN_SUBJECT") or None
    audit_page_size_max: int = int(getenv("AUDIT_PAGE_SIZE_MAX", "100"))
    api_base_url: str = getenv("MIZAN_API_URL", "http://localhost:8000/api/v1")


settings: Settings = Settings()

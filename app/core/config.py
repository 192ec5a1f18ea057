# app/core/config.py
import os
from typing import List
from pydantic import BaseModel, Field

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _default_database_url() -> str:
    data_dir = os.path.abspath(os.getenv("DATA_DIR", "./data"))
    os.makedirs(data_dir, exist_ok=True)
    return os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(data_dir, 'crm.db')}")


class Settings(BaseModel):
    DATABASE_URL: str = Field(default_factory=_default_database_url)
    SECRET_KEY: str = Field(default_factory=lambda: os.getenv("SECRET_KEY", "CHANGE_ME_SUPER_SECRET"))
    OTP_SECRET_KEY: str = Field(default_factory=lambda: os.getenv("OTP_SECRET_KEY") or os.getenv("SECRET_KEY", "CHANGE_ME_SUPER_SECRET"))
    ALGORITHM: str = "HS256"

    # tokens
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default_factory=lambda: int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")))
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default_factory=lambda: int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7")))
    TOKEN_CLEANUP_INTERVAL_HOURS: float = Field(default_factory=lambda: float(os.getenv("TOKEN_CLEANUP_INTERVAL_HOURS", "6")))

    # one-time codes
    OTP_LENGTH: int = Field(default_factory=lambda: int(os.getenv("OTP_LENGTH", "6")))
    OTP_EXPIRY_MINUTES: int = Field(default_factory=lambda: int(os.getenv("OTP_EXPIRY_MINUTES", "10")))
    OTP_RESEND_COOLDOWN_SECONDS: int = Field(default_factory=lambda: int(os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "60")))
    OTP_MAX_ATTEMPTS: int = Field(default_factory=lambda: int(os.getenv("OTP_MAX_ATTEMPTS", "5")))
    OTP_LOCKOUT_MINUTES: int = Field(default_factory=lambda: int(os.getenv("OTP_LOCKOUT_MINUTES", "30")))

    # password step
    LOGIN_MAX_ATTEMPTS: int = Field(default_factory=lambda: int(os.getenv("LOGIN_MAX_ATTEMPTS", "10")))
    LOGIN_MAX_ATTEMPTS_PER_IP: int = Field(default_factory=lambda: int(os.getenv("LOGIN_MAX_ATTEMPTS_PER_IP", "50")))
    LOGIN_LOCKOUT_MINUTES: int = Field(default_factory=lambda: int(os.getenv("LOGIN_LOCKOUT_MINUTES", "15")))

    # reserved account
    SUPER_ADMIN_EMAIL: str = Field(default_factory=lambda: os.getenv("SUPER_ADMIN_EMAIL", "support@techsupport4.com").strip().lower())
    SUPER_ADMIN_PASSWORD: str | None = Field(default_factory=lambda: os.getenv("SUPER_ADMIN_PASSWORD") or None)

    # cookies
    COOKIE_SECURE: bool = Field(default_factory=lambda: _env_bool("COOKIE_SECURE", "true"))
    ACCESS_COOKIE_NAME: str = Field(default_factory=lambda: os.getenv("ACCESS_COOKIE_NAME", "auth_token"))
    REFRESH_COOKIE_NAME: str = Field(default_factory=lambda: os.getenv("REFRESH_COOKIE_NAME", "refresh_token"))
    REFRESH_COOKIE_PATH: str = "/api/v1/auth/session"

    # mail
    SMTP_HOST: str | None = Field(default_factory=lambda: os.getenv("SMTP_HOST") or None)
    SMTP_PORT: int = Field(default_factory=lambda: int(os.getenv("SMTP_PORT", "587")))
    SMTP_USER: str | None = Field(default_factory=lambda: os.getenv("SMTP_USER") or None)
    SMTP_PASSWORD: str | None = Field(default_factory=lambda: os.getenv("SMTP_PASSWORD") or None)
    SMTP_USE_TLS: bool = Field(default_factory=lambda: _env_bool("SMTP_USE_TLS", "true"))
    EMAIL_FROM: str | None = Field(default_factory=lambda: os.getenv("EMAIL_FROM") or None)
    COMPANY_NAME: str = Field(default_factory=lambda: os.getenv("COMPANY_NAME", "TechSupport4"))

    # geolocation (MaxMind GeoLite2 City database; unset means offline lookups only)
    GEOIP_DB_PATH: str | None = Field(default_factory=lambda: os.getenv("GEOIP_DB_PATH") or None)

    # runtime
    LOG_LEVEL: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    LOG_JSON: bool = Field(default_factory=lambda: _env_bool("LOG_JSON", "true"))
    RUN_MIGRATIONS_ON_STARTUP: bool = Field(default_factory=lambda: _env_bool("RUN_MIGRATIONS_ON_STARTUP", "true"))
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
    )


settings = Settings()

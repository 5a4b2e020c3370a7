from functools import lru_cache
from typing import Any, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["*"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except Exception:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    port: int = Field(default=5000, alias="PORT")
    timezone: str = Field(default="Europe/Dublin", alias="TZ")

    # Session tokens
    secret_key: str = Field(
        default="change-me-in-production-min-32-chars",
        validation_alias=AliasChoices("SECRET_KEY", "JWT_SECRET", "secret_key"),
    )
    session_expires_in: int = Field(default=3600, alias="SESSION_EXPIRES_IN")
    pre_2fa_expires_in: int = Field(default=300, alias="PRE_2FA_EXPIRES_IN")

    # Firebase identity provider
    firebase_project_id: str = Field(default="", alias="FIREBASE_PROJECT_ID")
    provider_verify_attempts: int = Field(default=3, alias="PROVIDER_VERIFY_ATTEMPTS")
    provider_verify_timeout: float = Field(default=5.0, alias="PROVIDER_VERIFY_TIMEOUT")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="blackjack", alias="MONGODB_DB_NAME")

    # Redis (arq scheduler)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Mail
    email_user: str = Field(default="", alias="EMAIL_USER")
    email_pass: str = Field(default="", alias="EMAIL_PASS")
    smtp_host: str = Field(default="smtp.gmail.com", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    mail_from_name: str = Field(default="Blackjack Rewards", alias="MAIL_FROM_NAME")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="*",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    # Rewards
    bonus_amount: int = Field(default=1000, alias="BONUS_AMOUNT")
    bonus_cooldown_hours: int = Field(default=24, alias="BONUS_COOLDOWN_HOURS")
    daily_bonus_hour: int = Field(default=0, alias="DAILY_BONUS_HOUR")
    totp_issuer: str = Field(default="Blackjack Game", alias="TOTP_ISSUER")


@lru_cache
def get_settings() -> Settings:
    return Settings()

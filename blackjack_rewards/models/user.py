from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    email: Indexed(str, unique=True)
    firebase_uid: str | None = None
    role: str = "user"  # "user" | "admin"
    balance: int = 0
    last_bonus_at: datetime | None = None  # None: no daily bonus issued yet
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None  # base32, set iff two_factor_enabled
    two_factor_setup_at: datetime | None = None
    last_login_at: datetime | None = None
    last_email_sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
        indexes = [[("last_bonus_at", 1)]]

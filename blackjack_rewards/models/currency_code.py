from datetime import datetime
from typing import Literal

from beanie import Document, Indexed
from pydantic import Field

CodeKind = Literal["welcome", "daily", "test"]


class CurrencyCode(Document):
    """Single-use code worth ``amount`` coins. ``claimed`` only ever goes False -> True."""

    code: Indexed(str, unique=True)
    email: str  # owner
    amount: int = Field(gt=0)
    kind: CodeKind
    claimed: bool = False
    email_sent: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    claimed_at: datetime | None = None

    class Settings:
        name = "currency_codes"
        indexes = [
            [("email", 1), ("claimed", 1), ("created_at", 1)],
        ]

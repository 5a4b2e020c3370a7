"""Append-only trail of account and currency events (logins, 2FA, code issue/claim, balance writes)."""

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    email: str | None = None  # None for batch/system events
    event_type: str
    entity_type: str  # "user" | "currency_code"
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("email", 1), ("created_at", -1)],
            [("event_type", 1), ("created_at", -1)],
        ]

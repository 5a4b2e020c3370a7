from typing import Any

import structlog

from blackjack_rewards.models.audit_log import AuditLog


async def log_event(
    email: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    """Record an account or currency event, tagged with the current request id if one is bound."""
    entry = AuditLog(
        email=email,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
        request_id=structlog.contextvars.get_contextvars().get("request_id"),
    )
    await entry.insert()
    return entry

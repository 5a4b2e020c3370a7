from blackjack_rewards.models.user import User
from blackjack_rewards.models.currency_code import CurrencyCode
from blackjack_rewards.models.audit_log import AuditLog
from blackjack_rewards.models.failed_job import FailedJob

__all__ = [
    "User",
    "CurrencyCode",
    "AuditLog",
    "FailedJob",
]

"""Cron: daily bonus batch for every user whose cooldown has elapsed."""

from blackjack_rewards.core.logging import get_logger
from blackjack_rewards.services.bonus_codes import BatchSummary, run_daily_bonus_batch
from blackjack_rewards.services.mailer import Mailer

log = get_logger(__name__)


async def run_daily_bonus(mailer: Mailer) -> BatchSummary:
    log.info("daily_bonus_batch_start")
    return await run_daily_bonus_batch(mailer)

"""ARQ job definitions."""

import uuid
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from blackjack_rewards.core.config import get_settings
from blackjack_rewards.core.logging import configure_logging, get_logger
from blackjack_rewards.services.mailer import SmtpMailer

log = get_logger(__name__)


async def _run_with_dlq(ctx: dict[str, Any], job_name: str, coro) -> Any:
    """Await a job body; on failure store a FailedJob for this try, then re-raise."""
    try:
        return await coro
    except Exception as e:
        from blackjack_rewards.models.failed_job import FailedJob
        job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=job_id,
            job_try=int(ctx.get("job_try") or 1),
            error_type=type(e).__name__,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=job_id, reason=str(e))
        raise


# Cron: daily bonus codes
async def daily_bonus(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: issue and mail the daily bonus to every eligible user."""
    from blackjack_rewards.worker.cron import run_daily_bonus
    summary = await _run_with_dlq(ctx, "daily_bonus", run_daily_bonus(ctx["mailer"]))
    return summary.as_dict()


async def startup(ctx: dict) -> None:
    from blackjack_rewards.db.init import init_db
    settings = get_settings()
    configure_logging(debug=settings.debug)
    await init_db()
    ctx["mailer"] = SmtpMailer.from_settings(settings)
    log.info("worker_startup")


async def shutdown(ctx: dict) -> None:
    mailer = ctx.get("mailer")
    if mailer is not None:
        await mailer.close()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )

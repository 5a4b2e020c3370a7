"""Run ARQ worker. Usage: python -m blackjack_rewards.worker.run_worker"""

from zoneinfo import ZoneInfo

from arq import run_worker
from arq.cron import cron

from blackjack_rewards.core.config import get_settings
from blackjack_rewards.worker.tasks import daily_bonus, get_redis_settings, shutdown, startup

settings = get_settings()


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [daily_bonus]
    cron_jobs = [
        cron(daily_bonus, hour=settings.daily_bonus_hour, minute=0, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    timezone = ZoneInfo(settings.timezone)


if __name__ == "__main__":
    run_worker(WorkerSettings)

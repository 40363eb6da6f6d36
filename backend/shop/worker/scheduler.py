"""
定时任务调度器

运行方式：
    python -m shop.worker.scheduler
"""

import logging
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shop.core.config import settings
from shop.worker.tasks import sweep_expired_orders

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_job(
        sweep_expired_orders,
        IntervalTrigger(seconds=settings.SWEEP_INTERVAL_SECONDS),
        id="sweep_expired_orders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Scheduler started. Expired order sweep runs every %d seconds.",
        settings.SWEEP_INTERVAL_SECONDS,
    )
    scheduler.start()


if __name__ == "__main__":
    main()

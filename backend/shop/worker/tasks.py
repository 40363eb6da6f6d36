"""
定时任务逻辑
"""

import logging

from sqlmodel import Session

from shop.core.db import engine
from shop.services import sweeper

logger = logging.getLogger(__name__)


def sweep_expired_orders() -> None:
    """
    取消超时未支付的订单并释放卡密

    与前台请求触发的清理可以并发执行：每个订单的取消都是条件更新，
    不需要额外的锁。
    """
    with Session(engine) as session:
        try:
            cancelled = sweeper.sweep(session)
        except Exception:
            session.rollback()
            logger.exception("Expired order sweep failed")
            return
    if cancelled:
        logger.info("Sweep finished, cancelled %d orders", len(cancelled))

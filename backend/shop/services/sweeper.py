"""
过期订单清理服务

待支付订单超过支付超时（PAYMENT_TIMEOUT_MINUTES）后被取消，释放其预占的卡密，
并重算受影响商品的聚合值。

调用时机：
- 前台读请求之前（商品列表、商品详情、下单、订单详情、我的订单），按需带过滤条件
- worker 定时任务（全局）
- 管理员手动触发

每个订单都用条件更新（status = pending）取消，多个进程同时清理同一批订单时，
每个订单只会被取消一次；与支付回调并发时，回调先提交则清理不会覆盖它。
加锁顺序与支付回调一致：先订单行，后卡密行。
"""
from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, col, select

from shop.core.config import settings
from shop.core.db import is_missing_schema_error
from shop.enums import OrderStatus
from shop.models import Order, now_ms
from shop.services import aggregates, reservation

logger = logging.getLogger(__name__)


def _expired_orders(
    session: Session,
    cutoff: int,
    product_id: str | None,
    user_id: str | None,
    order_id: str | None,
) -> list[tuple[str, str]]:
    stmt = select(Order.order_id, Order.product_id).where(
        Order.status == OrderStatus.pending.value,
        Order.created_at < cutoff,
    )
    if product_id:
        stmt = stmt.where(Order.product_id == product_id)
    if user_id:
        stmt = stmt.where(Order.user_id == user_id)
    if order_id:
        stmt = stmt.where(Order.order_id == order_id)
    return [(row[0], row[1]) for row in session.exec(stmt).all()]


def sweep(
    session: Session,
    product_id: str | None = None,
    user_id: str | None = None,
    order_id: str | None = None,
    now: int | None = None,
) -> list[str]:
    """
    取消超时未支付的订单

    Args:
        session: 数据库会话
        product_id: 只清理该商品的订单
        user_id: 只清理该用户的订单
        order_id: 只清理该订单
        now: 当前毫秒时间戳

    Returns:
        本次取消的订单号列表（表结构缺失时返回空列表）
    """
    if now is None:
        now = now_ms()
    cutoff = now - settings.payment_timeout_ms

    try:
        candidates = _expired_orders(session, cutoff, product_id, user_id, order_id)
    except DBAPIError as exc:
        if not is_missing_schema_error(exc):
            raise
        session.rollback()
        logger.warning("Skip order sweep, schema not ready: %s", exc)
        return []

    cancelled: list[str] = []
    touched: set[str] = set()
    for oid, pid in candidates:
        result = session.exec(  # type: ignore[call-overload]
            update(Order)
            .where(col(Order.order_id) == oid, col(Order.status) == OrderStatus.pending.value)
            .values(status=OrderStatus.cancelled.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # 已被支付回调或其它清理进程处理
            session.rollback()
            continue
        reservation.release(session, oid)
        session.commit()
        cancelled.append(oid)
        touched.add(pid)

    if cancelled:
        logger.info("Expired orders cancelled: count=%d orders=%s", len(cancelled), cancelled)
        aggregates.recalc_many(session, touched, now)
    return cancelled

"""
卡密预占服务

保证两个并发买家抢最后一件库存时，不会同时拿到指向同一张卡密的待支付订单。

预占是整个系统里唯一需要原子性的操作：用一条条件 UPDATE 完成“挑一张空闲卡密”
和“占用它”，中间没有可被其他请求利用的时间窗口：

    UPDATE cards SET reserved_order_id = :order_id, reserved_at = :now
    WHERE id = (SELECT id FROM cards WHERE <空闲> LIMIT 1 [FOR UPDATE SKIP LOCKED])
      AND <空闲>

外层再次校验空闲条件，所以同一张卡密最多只有一个调用方的 rowcount 为 1。

本模块的函数只执行语句不提交事务，由调用方决定提交或回滚。
"""
from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from shop.models import Card, now_ms
from shop.services.ledger import is_free, reservation_cutoff

logger = logging.getLogger(__name__)


def reserve(session: Session, product_id: str, order_id: str, now: int | None = None) -> bool:
    """
    为订单预占一张空闲卡密

    没有库存是正常的否定结果，返回 False，不抛异常。

    Args:
        session: 数据库会话
        product_id: 商品 ID
        order_id: 订单号
        now: 当前毫秒时间戳

    Returns:
        是否预占成功
    """
    if now is None:
        now = now_ms()
    cutoff = reservation_cutoff(now)

    # 子查询使用别名，避免被外层 UPDATE 的 cards 表关联（correlate）
    picked = aliased(Card)
    candidate = (
        select(picked.id)
        .where(picked.product_id == product_id, is_free(cutoff, picked))
        .order_by(picked.id)
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    stmt = (
        update(Card)
        .where(col(Card.id) == candidate, is_free(cutoff))
        .values(reserved_order_id=order_id, reserved_at=now)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    reserved = result.rowcount == 1
    if not reserved:
        logger.info("Reservation failed: product=%s order=%s", product_id, order_id)
    return reserved


def release(session: Session, order_id: str) -> int:
    """
    释放订单占用的卡密（只处理未使用的卡密）

    用于超时清理，以及预占成功但订单写入失败时的回滚。

    Returns:
        释放的卡密数量
    """
    stmt = (
        update(Card)
        .where(col(Card.reserved_order_id) == order_id, col(Card.is_used) == False)  # noqa: E712
        .values(reserved_order_id=None, reserved_at=None)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    return result.rowcount


def get_reserved(session: Session, order_id: str) -> Card | None:
    """查询仍绑定在订单上的未使用卡密（支付回调优先发这张）"""
    stmt = (
        select(Card)
        .where(Card.reserved_order_id == order_id, Card.is_used == False)  # noqa: E712
        .order_by(col(Card.id).asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return session.exec(stmt).first()


def claim_any(session: Session, product_id: str, order_id: str, now: int | None = None) -> Card | None:
    """
    不依赖原有预占，直接抢一张当前空闲的卡密并绑定到订单

    原预占已失效（过期被别人占走或被清理）时，支付回调走这条兜底路径。
    同商品的卡密是等价的，所以买家可能拿到与最初预占不同的一张。

    Returns:
        抢到的卡密，没有空闲卡密时返回 None
    """
    if not reserve(session, product_id, order_id, now):
        return None
    return get_reserved(session, order_id)


def consume(session: Session, card: Card, order_id: str, now: int | None = None) -> bool:
    """
    把绑定在订单上的卡密标记为已使用，同时清空预占字段

    条件更新：只有卡密仍未使用且仍绑定在该订单上才会成功，
    重复回调或并发回调中只有一个能消费同一张卡密。

    Returns:
        是否消费成功
    """
    if now is None:
        now = now_ms()
    stmt = (
        update(Card)
        .where(
            col(Card.id) == card.id,
            col(Card.is_used) == False,  # noqa: E712
            col(Card.reserved_order_id) == order_id,
        )
        .values(is_used=True, used_at=now, reserved_order_id=None, reserved_at=None)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    return result.rowcount == 1

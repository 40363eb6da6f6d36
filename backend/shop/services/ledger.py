"""
库存台账服务

卡密表是“某个商品能否售出一件”的唯一事实来源。本模块提供：
- 可售 / 预占 / 未使用数量统计（基于预占窗口）
- 销量统计（来自订单而不是卡密，共享商品没有逐件卡密）
- 管理员批量导入、删除卡密，删除商品

卡密状态判定（now 为毫秒时间戳）：
- 可售: is_used = false AND (reserved_at IS NULL OR reserved_at < now - 预占窗口)
- 预占: is_used = false AND reserved_at >= now - 预占窗口
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import ColumnElement, and_, case, delete, or_
from sqlmodel import Session, col, func, select

from shop.api.errors import AppError, not_found
from shop.core.config import settings
from shop.enums import SOLD_STATUSES
from shop.models import Card, Order, Product, now_ms

logger = logging.getLogger(__name__)

# 共享商品只要还有未使用的卡密，库存就显示为“无限”
UNLIMITED_STOCK = 999999


@dataclass(frozen=True)
class StockSnapshot:
    """某一时刻的商品库存快照"""
    stock: int  # 对外展示的库存（共享商品为 UNLIMITED_STOCK 或 0）
    available: int  # 可售卡密数
    locked: int  # 预占中的卡密数
    unused: int  # 未使用卡密数（可售 + 预占）


def reservation_cutoff(now: int | None = None) -> int:
    """预占窗口的起点：reserved_at 早于此时间的预占视为已失效"""
    if now is None:
        now = now_ms()
    return now - settings.reservation_window_ms


def is_free(cutoff: int, entity: Any = Card) -> ColumnElement[bool]:
    """卡密可售的 SQL 条件；entity 可传入 Card 的别名（用于子查询）"""
    return and_(
        entity.is_used == False,  # noqa: E712
        or_(entity.reserved_at.is_(None), entity.reserved_at < cutoff),
    )


def is_locked(cutoff: int) -> ColumnElement[bool]:
    """卡密预占中的 SQL 条件"""
    return and_(
        col(Card.is_used) == False,  # noqa: E712
        col(Card.reserved_at).is_not(None),
        col(Card.reserved_at) >= cutoff,
    )


def count_available(session: Session, product_id: str, now: int | None = None) -> int:
    cutoff = reservation_cutoff(now)
    stmt = (
        select(func.count())
        .select_from(Card)
        .where(Card.product_id == product_id, is_free(cutoff))
    )
    return int(session.exec(stmt).one())


def count_locked(session: Session, product_id: str, now: int | None = None) -> int:
    cutoff = reservation_cutoff(now)
    stmt = (
        select(func.count())
        .select_from(Card)
        .where(Card.product_id == product_id, is_locked(cutoff))
    )
    return int(session.exec(stmt).one())


def count_unused(session: Session, product_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(Card)
        .where(Card.product_id == product_id, col(Card.is_used) == False)  # noqa: E712
    )
    return int(session.exec(stmt).one())


def count_sold(session: Session, product_id: str) -> int:
    """销量：已支付、已发货订单的数量之和"""
    stmt = select(func.coalesce(func.sum(Order.quantity), 0)).where(
        Order.product_id == product_id,
        col(Order.status).in_([s.value for s in SOLD_STATUSES]),
    )
    return int(session.exec(stmt).one())


def stock_snapshot(session: Session, product: Product, now: int | None = None) -> StockSnapshot:
    """
    一次查询统计商品的可售、预占、未使用卡密数

    Args:
        session: 数据库会话
        product: 商品
        now: 当前毫秒时间戳（测试时可注入）

    Returns:
        StockSnapshot: 库存快照
    """
    cutoff = reservation_cutoff(now)
    unused_expr = func.coalesce(
        func.sum(case((col(Card.is_used) == False, 1), else_=0)), 0  # noqa: E712
    )
    available_expr = func.coalesce(func.sum(case((is_free(cutoff), 1), else_=0)), 0)
    locked_expr = func.coalesce(func.sum(case((is_locked(cutoff), 1), else_=0)), 0)
    row = session.exec(
        select(unused_expr, available_expr, locked_expr).where(Card.product_id == product.id)
    ).one()
    unused, available, locked = (int(v or 0) for v in row)

    if product.is_shared:
        stock = UNLIMITED_STOCK if unused > 0 else 0
    else:
        stock = available
    return StockSnapshot(stock=stock, available=available, locked=locked, unused=unused)


def parse_card_keys(raw: str) -> list[str]:
    """按行拆分卡密，去掉首尾空白并丢弃空行"""
    return [line.strip() for line in (raw or "").splitlines() if line.strip()]


def add_cards(session: Session, product_id: str, raw: str) -> int:
    """
    批量导入卡密

    Args:
        session: 数据库会话
        product_id: 商品 ID
        raw: 换行分隔的卡密文本

    Returns:
        实际导入的数量
    """
    if session.get(Product, product_id) is None:
        raise not_found("Product", 404101)
    keys = parse_card_keys(raw)
    if not keys:
        return 0
    now = now_ms()
    session.add_all([Card(product_id=product_id, card_key=key, created_at=now) for key in keys])
    session.commit()
    logger.info("Cards added: product=%s count=%d", product_id, len(keys))
    return len(keys)


def list_cards(session: Session, product_id: str, include_used: bool = False) -> list[Card]:
    stmt = select(Card).where(Card.product_id == product_id)
    if not include_used:
        stmt = stmt.where(Card.is_used == False)  # noqa: E712
    return list(session.exec(stmt.order_by(col(Card.id).asc())).all())


def delete_card(session: Session, card_id: int, now: int | None = None) -> str:
    """
    删除卡密（仅限未使用且不在预占窗口内的卡密）

    判断和删除是同一条条件 DELETE，读取之后才被预占的卡密不会被误删。

    Returns:
        被删除卡密所属的商品 ID（用于之后重算聚合）

    Raises:
        AppError: 卡密不存在（404）、已使用或正在被预占（409）
    """
    card = session.get(Card, card_id)
    if not card:
        raise not_found("Card", 404102)
    product_id = card.product_id

    stmt = (
        delete(Card)
        .where(col(Card.id) == card_id, is_free(reservation_cutoff(now)))
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    if result.rowcount != 1:
        # 没有删除：重新读取，区分不存在、已使用、预占中
        session.rollback()
        card = session.get(Card, card_id)
        if not card:
            raise not_found("Card", 404102)
        if card.is_used:
            raise AppError(code=409101, message="Cannot delete used card", status_code=409)
        raise AppError(code=409102, message="Card is reserved. Try again later.", status_code=409)

    session.expunge(card)
    session.commit()
    logger.info("Card deleted: id=%s product=%s", card_id, product_id)
    return product_id


def delete_product(session: Session, product_id: str, now: int | None = None) -> int:
    """
    删除商品及其全部卡密

    有卡密正处于预占窗口内（有买家正在付款）时拒绝删除。先用条件 DELETE
    删掉不在预占中的卡密，剩下的就是预占中的，有剩余则整体回滚。
    历史订单保留（订单里有商品名快照）。

    Returns:
        一并删除的卡密数量

    Raises:
        AppError: 商品不存在（404101）、有卡密正在被预占（409103）
    """
    product = session.get(Product, product_id)
    if product is None:
        raise not_found("Product", 404101)

    cutoff = reservation_cutoff(now)
    removed = session.exec(  # type: ignore[call-overload]
        delete(Card)
        .where(col(Card.product_id) == product_id, ~is_locked(cutoff))
        .execution_options(synchronize_session=False)
    ).rowcount
    remaining = session.exec(
        select(func.count()).select_from(Card).where(Card.product_id == product_id)
    ).one()
    if remaining:
        session.rollback()
        raise AppError(
            code=409103, message="Product has reserved cards. Try again later.", status_code=409
        )

    session.exec(  # type: ignore[call-overload]
        delete(Product)
        .where(col(Product.id) == product_id)
        .execution_options(synchronize_session=False)
    )
    session.expunge(product)
    session.commit()
    logger.info("Product deleted: id=%s cards=%d", product_id, removed)
    return removed

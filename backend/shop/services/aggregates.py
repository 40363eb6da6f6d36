"""
商品聚合字段重算服务

Product.stock_count / locked_count / sold_count 是缓存值，首页列表直接读取，
不在每次浏览时对卡密表、订单表做关联子查询。卡密增删、订单过期、发货、退款之后
调用这里重算；短暂的不一致可以接受，下一次重算会修正。
"""
from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, select

from shop.core.db import is_missing_schema_error
from shop.models import Product
from shop.services import ledger

logger = logging.getLogger(__name__)


def recalc(session: Session, product_id: str, now: int | None = None) -> Product | None:
    """
    重算单个商品的库存、预占、销量聚合值

    - 库存: 普通商品为可售卡密数；共享商品有未使用卡密时为 UNLIMITED_STOCK，否则为 0
    - 预占: 预占窗口内的卡密数
    - 销量: 已支付、已发货订单的数量之和

    表或字段缺失（迁移尚未执行）时记录日志后直接返回：聚合值过期可以恢复，
    请求失败则不行。重复调用结果相同（幂等）。

    Args:
        session: 数据库会话
        product_id: 商品 ID
        now: 当前毫秒时间戳

    Returns:
        更新后的商品；商品不存在或表结构缺失时返回 None
    """
    pid = (product_id or "").strip()
    if not pid:
        return None

    try:
        product = session.get(Product, pid)
        if product is None:
            return None
        snapshot = ledger.stock_snapshot(session, product, now)
        sold = ledger.count_sold(session, pid)

        product.stock_count = snapshot.stock
        product.locked_count = snapshot.locked
        product.sold_count = sold
        session.add(product)
        session.commit()
    except DBAPIError as exc:
        if not is_missing_schema_error(exc):
            raise
        session.rollback()
        logger.warning("Skip aggregate recalc for %s, schema not ready: %s", pid, exc)
        return None

    session.refresh(product)
    return product


def recalc_many(session: Session, product_ids: Iterable[str], now: int | None = None) -> int:
    """
    批量重算（尽力而为）

    某个商品失败不影响其它商品，只记录日志。

    Returns:
        成功重算的商品数
    """
    ids = sorted({str(pid).strip() for pid in product_ids if pid and str(pid).strip()})
    done = 0
    for pid in ids:
        try:
            if recalc(session, pid, now) is not None:
                done += 1
        except Exception:
            session.rollback()
            logger.exception("Aggregate recalc failed for product %s", pid)
    return done


def backfill_all(session: Session) -> int:
    """重算全部商品（部署时由 initial_data 执行一次）"""
    try:
        ids = list(session.exec(select(Product.id)).all())
    except DBAPIError as exc:
        if not is_missing_schema_error(exc):
            raise
        session.rollback()
        logger.warning("Skip aggregate backfill, schema not ready: %s", exc)
        return 0
    return recalc_many(session, ids)

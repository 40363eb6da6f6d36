"""
订单生命周期服务

状态机（见 shop.enums.ORDER_TRANSITIONS）：

    pending  -> delivered | paid | cancelled
    paid     -> delivered | refunded
    delivered-> refunded
    cancelled-> delivered | paid      （超时清理后才到达的支付成功通知）

下单、支付回调、退款、手动补发都在这里完成。预期中的否定结果（没库存、超限购、
重复回调）以 CheckoutOutcome / PaymentOutcome 返回，不抛异常；只有真正的异常情况
（数据库不可用、订单不存在等）才抛出。
"""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from shop import crud
from shop.api.errors import AppError, not_found
from shop.enums import (
    SOLD_STATUSES,
    CheckoutError,
    NotificationType,
    OrderStatus,
    PaymentResult,
)
from shop.models import Card, Order, Product, now_ms
from shop.services import aggregates, ledger, reservation

logger = logging.getLogger(__name__)

# 订单号冲突（主键重复）时的最大重试次数
ORDER_ID_ATTEMPTS = 3

# 支付成功通知可以推进的订单状态
PAYABLE_STATUSES = (OrderStatus.pending, OrderStatus.cancelled)

# 可以标记退款的订单状态
REFUNDABLE_STATUSES = (OrderStatus.paid, OrderStatus.delivered)

_BASE36 = string.digits + string.ascii_lowercase


@dataclass
class CheckoutOutcome:
    """下单结果：ok 为 False 时 reason 说明原因，此时没有任何数据被修改"""
    ok: bool
    reason: CheckoutError | None = None
    order: Order | None = None


@dataclass
class PaymentOutcome:
    """支付成功回调的处理结果"""
    result: PaymentResult
    order: Order | None = None
    card_id: int | None = None


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_id(now: int | None = None) -> str:
    """
    生成订单号：ORD + 毫秒时间戳(36 进制) + 6 位随机字符，统一大写

    不做全局协调，冲突只可能在同一毫秒内随机部分相同时发生；
    写入时主键冲突会换一个订单号重试。
    """
    if now is None:
        now = now_ms()
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"ORD{_to_base36(now)}{suffix}".upper()


def count_prior_purchases(
    session: Session, product_id: str, user_id: str | None, email: str | None
) -> int | None:
    """
    统计买家在该商品上已支付/已发货的订单数

    用户 ID 与邮箱之间是 OR 关系，只使用实际提供了的标识。

    Returns:
        订单数；没有任何可用标识时返回 None（无法限购）
    """
    conditions = []
    if user_id:
        conditions.append(col(Order.user_id) == user_id)
    if email:
        conditions.append(col(Order.email) == email)
    if not conditions:
        return None
    stmt = (
        select(func.count())
        .select_from(Order)
        .where(
            Order.product_id == product_id,
            col(Order.status).in_([s.value for s in SOLD_STATUSES]),
            or_(*conditions),
        )
    )
    return int(session.exec(stmt).one())


def create_order(
    session: Session,
    *,
    product_id: str,
    user_id: str | None = None,
    username: str | None = None,
    email: str | None = None,
    now: int | None = None,
) -> CheckoutOutcome:
    """
    创建待支付订单

    检查顺序：商品存在 -> 已上架 -> 限购 -> 库存。所有检查都在写入之前完成，
    被拒绝时不会留下任何预占。

    普通商品必须先预占到一张卡密才写入订单；并发抢占失败返回 stock_locked。
    预占和订单写入在同一个事务里，写入失败回滚时预占一并撤销。

    Args:
        session: 数据库会话
        product_id: 商品 ID
        user_id: 登录用户 ID（游客为空）
        username: 用户名
        email: 买家邮箱（可选）
        now: 当前毫秒时间戳

    Returns:
        CheckoutOutcome: 下单结果

    Raises:
        AppError: 商品不存在时抛出 404101 错误
    """
    if now is None:
        now = now_ms()
    product = crud.product.get_or_404(session=session, product_id=product_id)
    if not product.is_active:
        return CheckoutOutcome(ok=False, reason=CheckoutError.inactive)

    email = (email or "").strip() or None

    if product.purchase_limit and product.purchase_limit > 0:
        prior = count_prior_purchases(session, product.id, user_id, email)
        if prior is not None and prior >= product.purchase_limit:
            return CheckoutOutcome(ok=False, reason=CheckoutError.limit)

    snapshot = ledger.stock_snapshot(session, product, now)
    if snapshot.stock <= 0:
        reason = CheckoutError.stock_locked if snapshot.locked > 0 else CheckoutError.out_of_stock
        return CheckoutOutcome(ok=False, reason=reason)

    for _ in range(ORDER_ID_ATTEMPTS):
        order_id = generate_order_id(now)
        # 共享商品的卡密可以重复售出，不需要预占
        if not product.is_shared and not reservation.reserve(session, product.id, order_id, now):
            session.rollback()
            return CheckoutOutcome(ok=False, reason=CheckoutError.stock_locked)

        order = Order(
            order_id=order_id,
            product_id=product.id,
            product_name=product.name,
            amount=product.price,
            email=email,
            user_id=user_id,
            username=username,
            status=OrderStatus.pending,
            created_at=now,
        )
        session.add(order)
        try:
            session.commit()
        except IntegrityError:
            # 回滚同时撤销本次预占
            session.rollback()
            logger.warning("Order id collision, retrying: %s", order_id)
            continue
        session.refresh(order)
        logger.info("Order created: order=%s product=%s user=%s", order_id, product.id, user_id)
        aggregates.recalc_many(session, [order.product_id], now)
        return CheckoutOutcome(ok=True, order=order)

    raise AppError(code=500201, message="Failed to allocate order id", status_code=500)


def _shared_card(session: Session, product_id: str) -> Card | None:
    """共享商品：任取一张未使用的卡密（不消费）"""
    stmt = (
        select(Card)
        .where(Card.product_id == product_id, Card.is_used == False)  # noqa: E712
        .order_by(col(Card.id).asc())
        .limit(1)
    )
    return session.exec(stmt).first()


def _take_card(session: Session, order: Order, now: int, prefer_reserved: bool) -> Card | None:
    """
    为订单取一张卡密并消费掉

    优先使用仍绑定在订单上的卡密；预占已失效时兜底抢任意一张空闲卡密。
    共享商品直接返回共享卡密，不标记已使用。
    """
    product = session.get(Product, order.product_id)
    if product is not None and product.is_shared:
        return _shared_card(session, order.product_id)

    card = reservation.get_reserved(session, order.order_id) if prefer_reserved else None
    if card is not None and reservation.consume(session, card, order.order_id, now):
        return card

    card = reservation.claim_any(session, order.product_id, order.order_id, now)
    if card is not None and reservation.consume(session, card, order.order_id, now):
        return card
    return None


def _notify(session: Session, order: Order, type: NotificationType) -> None:
    """写站内通知并重算聚合（提交之后执行，尽力而为，不影响主流程结果）"""
    title_keys = {
        NotificationType.order_delivered: "notification.orderDelivered",
        NotificationType.order_paid_undelivered: "notification.orderPaidUndelivered",
        NotificationType.order_refunded: "notification.orderRefunded",
    }
    key = title_keys[type]
    try:
        crud.notification.create(
            session=session,
            user_id=order.user_id,
            type=type,
            title_key=f"{key}.title",
            content_key=f"{key}.content",
            data={"order_id": order.order_id, "product_name": order.product_name},
        )
    except Exception:
        session.rollback()
        logger.exception("Failed to create notification for order %s", order.order_id)
    aggregates.recalc_many(session, [order.product_id])


def handle_payment_success(
    session: Session, order_id: str, trade_no: str | None, now: int | None = None
) -> PaymentOutcome:
    """
    处理网关的支付成功通知

    订单状态为 pending 或 cancelled 时处理（cancelled：订单刚被超时清理，
    但钱已经付了，必须履约）：
    1. 取卡密：优先用预占的那张，预占失效则兜底抢一张空闲卡密
    2. 取到卡密：卡密标记已使用，订单置为 delivered，写入 trade_no / card_key
    3. 库存耗尽：订单置为 paid（已收款未发货），等待管理员手动处理

    卡密消费与订单的条件更新（status IN pending/cancelled）在同一事务内提交；
    订单条件更新没有命中时说明另一个回调已经处理过，整个事务回滚。
    重复通知不会发出第二张卡密，也不会把已发货订单改回 paid。

    加锁顺序：先锁订单行，再动卡密行。超时清理也是先改订单再释放卡密，
    两条路径并发处理同一个订单时只会排队，不会互相等待形成死锁。

    Args:
        session: 数据库会话
        order_id: 订单号（网关的 out_trade_no）
        trade_no: 网关交易号
        now: 当前毫秒时间戳

    Returns:
        PaymentOutcome: 处理结果
    """
    if now is None:
        now = now_ms()
    order = crud.order.get_for_update(session=session, order_id=order_id)
    if order is None:
        session.rollback()
        logger.warning("Payment notify for unknown order: %s", order_id)
        return PaymentOutcome(result=PaymentResult.ignored)
    if order.status not in PAYABLE_STATUSES:
        # 释放订单行锁
        session.rollback()
        logger.info("Payment notify ignored: order=%s status=%s", order_id, order.status)
        return PaymentOutcome(result=PaymentResult.ignored, order=order)

    card = _take_card(session, order, now, prefer_reserved=True)

    values: dict = {"paid_at": now, "trade_no": trade_no}
    if card is not None:
        values.update(status=OrderStatus.delivered.value, delivered_at=now, card_key=card.card_key)
        result = PaymentResult.delivered
    else:
        values.update(status=OrderStatus.paid.value)
        result = PaymentResult.paid

    stmt = (
        update(Order)
        .where(
            col(Order.order_id) == order_id,
            col(Order.status).in_([s.value for s in PAYABLE_STATUSES]),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    updated = session.exec(stmt)  # type: ignore[call-overload]
    if updated.rowcount != 1:
        session.rollback()
        logger.info("Payment notify lost race, already processed: %s", order_id)
        session.refresh(order)
        return PaymentOutcome(result=PaymentResult.ignored, order=order)

    card_id = card.id if card is not None else None
    session.commit()
    session.refresh(order)

    if result == PaymentResult.delivered:
        logger.info("Order delivered: order=%s card=%s trade_no=%s", order_id, card_id, trade_no)
        _notify(session, order, NotificationType.order_delivered)
    else:
        logger.error(
            "Order paid but no stock to deliver (oversold): order=%s product=%s trade_no=%s",
            order_id,
            order.product_id,
            trade_no,
        )
        _notify(session, order, NotificationType.order_paid_undelivered)
    return PaymentOutcome(result=result, order=order, card_id=card_id)


def get_order_or_404(session: Session, order_id: str) -> Order:
    order = session.get(Order, order_id)
    if not order:
        raise not_found("Order", 404201)
    return order


def mark_refunded(session: Session, order_id: str) -> Order:
    """
    标记订单已退款

    只做本地记账：管理员在网关后台确认退款成功之后调用。
    仅 paid / delivered 且有 trade_no 的订单可以退款。

    Raises:
        AppError: 订单不存在（404201）或状态不允许退款（409201）
    """
    order = get_order_or_404(session, order_id)
    if order.status not in REFUNDABLE_STATUSES or not order.trade_no:
        raise AppError(code=409201, message="Order status not refundable", status_code=409)

    stmt = (
        update(Order)
        .where(
            col(Order.order_id) == order_id,
            col(Order.status).in_([s.value for s in REFUNDABLE_STATUSES]),
        )
        .values(status=OrderStatus.refunded.value)
        .execution_options(synchronize_session=False)
    )
    updated = session.exec(stmt)  # type: ignore[call-overload]
    if updated.rowcount != 1:
        session.rollback()
        raise AppError(code=409201, message="Order status not refundable", status_code=409)
    session.commit()
    session.refresh(order)
    logger.info("Order refunded: %s", order_id)
    _notify(session, order, NotificationType.order_refunded)
    return order


def fulfil_paid_order(session: Session, order_id: str, now: int | None = None) -> Order | None:
    """
    管理员手动补发：已收款未发货（超卖）的订单在补充库存后发货

    Returns:
        发货后的订单；库存仍然不足时返回 None（不修改任何数据）

    Raises:
        AppError: 订单不存在（404201）或不是 paid 状态（409202）
    """
    if now is None:
        now = now_ms()
    # 与支付回调相同：先锁订单行再取卡密
    order = crud.order.get_for_update(session=session, order_id=order_id)
    if order is None:
        session.rollback()
        raise not_found("Order", 404201)
    if order.status != OrderStatus.paid:
        session.rollback()
        raise AppError(code=409202, message="Only paid orders can be fulfilled", status_code=409)

    card = _take_card(session, order, now, prefer_reserved=False)
    if card is None:
        session.rollback()
        return None

    stmt = (
        update(Order)
        .where(col(Order.order_id) == order_id, col(Order.status) == OrderStatus.paid.value)
        .values(status=OrderStatus.delivered.value, delivered_at=now, card_key=card.card_key)
        .execution_options(synchronize_session=False)
    )
    updated = session.exec(stmt)  # type: ignore[call-overload]
    if updated.rowcount != 1:
        session.rollback()
        raise AppError(code=409202, message="Only paid orders can be fulfilled", status_code=409)
    session.commit()
    session.refresh(order)
    logger.info("Paid order fulfilled manually: order=%s", order_id)
    _notify(session, order, NotificationType.order_delivered)
    return order


def list_oversold(session: Session) -> list[Order]:
    """已收款但未发货的订单（库存耗尽时支付成功），按支付时间排序，供后台补发"""
    stmt = (
        select(Order)
        .where(Order.status == OrderStatus.paid.value)
        .order_by(col(Order.paid_at).asc(), col(Order.created_at).asc())
    )
    return list(session.exec(stmt).all())

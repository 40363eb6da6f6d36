"""
订单路由模块

处理订单相关的 API 端点，包括：
- 创建订单（预占卡密，返回网关下单表单）
- 查询我的订单（分页）
- 查询单个订单详情
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Response

from shop import crud
from shop.api.deps import CsrfUser, CurrentUser, OptionalUser, SessionDep, is_admin
from shop.api.errors import AppError, checkout_error, not_found
from shop.api.schemas import (
    ApiEnvelope,
    CheckoutForm,
    OrderCreateData,
    OrderCreateRequest,
    OrderData,
    OrdersData,
)
from shop.core.config import settings
from shop.enums import CheckoutError
from shop.models import Order, User, now_ms
from shop.services import orders, sweeper
from shop.services.gateway import get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

# 支付完成跳转回来时用于找回订单号
PENDING_ORDER_COOKIE = "pending_order"


def to_order_data(order: Order, include_card_key: bool = True) -> OrderData:
    """
    将订单模型转换为响应数据模型

    Args:
        order: 订单数据库模型
        include_card_key: 是否返回卡密
    """
    return OrderData(
        order_id=order.order_id,
        product_id=order.product_id,
        product_name=order.product_name,
        amount=order.amount,
        email=order.email,
        status=order.status,
        trade_no=order.trade_no,
        card_key=order.card_key if include_card_key else None,
        quantity=order.quantity,
        created_at=order.created_at,
        paid_at=order.paid_at,
        delivered_at=order.delivered_at,
    )


def _checkout_form(order: Order) -> CheckoutForm:
    gateway = get_gateway()
    base = f"{settings.SERVER_HOST.rstrip('/')}{settings.API_V1_STR}"
    fields = gateway.checkout_fields(
        order_id=order.order_id,
        name=order.product_name,
        amount=order.amount,
        notify_url=f"{base}/payment/notify",
        return_url=f"{base}/payment/return/{order.order_id}",
    )
    return CheckoutForm(action=gateway.pay_url, fields=fields)


@router.post("", response_model=ApiEnvelope)
def create_order(
    session: SessionDep,
    current_user: CsrfUser,
    body: OrderCreateRequest,
    response: Response,
) -> ApiEnvelope:
    """
    创建订单

    先预占一张卡密，再写入待支付订单，最后返回提交到支付网关的表单。
    库存不足、限购等业务失败返回 4xx，message 为失败原因代码。

    请求路径: POST /api/v1/orders
    请求头: X-CSRF-Token

    Raises:
        AppError: 下单失败（409001 / 409002 / 403002 / 400301）、用户被封禁（403102）
    """
    if current_user.is_blocked:
        raise AppError(code=403102, message="User is blocked", status_code=403)

    now = now_ms()
    sweeper.sweep(session, product_id=body.product_id, now=now)
    outcome = orders.create_order(
        session,
        product_id=body.product_id,
        user_id=current_user.user_id,
        username=current_user.username,
        email=body.email or current_user.email,
        now=now,
    )
    if not outcome.ok or outcome.order is None:
        # 失败结果总是带 reason，缺失时按售罄处理
        raise checkout_error(outcome.reason or CheckoutError.out_of_stock)

    order = outcome.order
    response.set_cookie(
        PENDING_ORDER_COOKIE,
        order.order_id,
        max_age=settings.PAYMENT_TIMEOUT_MINUTES * 60,
        httponly=True,
        samesite="lax",
    )
    data = OrderCreateData(order=to_order_data(order), payment=_checkout_form(order))
    return ApiEnvelope(data=data)


@router.get("", response_model=ApiEnvelope)
def list_orders(
    session: SessionDep,
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    """
    我的订单（分页，按创建时间倒序）

    请求路径: GET /api/v1/orders?page=1&page_size=20
    """
    sweeper.sweep(session, user_id=current_user.user_id)
    rows, count = crud.order.list_for_user(
        session=session,
        user_id=current_user.user_id,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return ApiEnvelope(data=OrdersData(data=[to_order_data(o) for o in rows], count=count))


def _can_view(order: Order, user: User | None) -> bool:
    # 游客订单凭订单号查看
    if order.user_id is None:
        return True
    if user is None:
        return False
    return order.user_id == user.user_id or is_admin(user)


@router.get("/{order_id}", response_model=ApiEnvelope)
def get_order(session: SessionDep, current_user: OptionalUser, order_id: str) -> ApiEnvelope:
    """
    订单详情

    请求路径: GET /api/v1/orders/{order_id}

    Raises:
        AppError: 订单不存在或无权查看时抛出 404201 错误
    """
    sweeper.sweep(session, order_id=order_id)
    order = crud.order.get(session=session, order_id=order_id)
    if order is None or not _can_view(order, current_user):
        raise not_found("Order", 404201)
    return ApiEnvelope(data=to_order_data(order))

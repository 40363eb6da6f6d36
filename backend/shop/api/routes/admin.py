"""
后台管理路由模块

管理员（用户名在 ADMIN_USERS 中）可以：
- 新建/更新/删除商品、上下架、排序、手动重算聚合
- 导入、查看、删除卡密
- 查看订单、超卖订单，标记退款，手动补发
- 手动触发过期订单清理
- 查看用户、封禁/解封用户

所有写操作都需要 X-CSRF-Token 请求头。
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from shop import crud
from shop.api.deps import AdminCsrf, CurrentAdmin, SessionDep
from shop.api.errors import checkout_error
from shop.api.routes.orders import to_order_data
from shop.api.routes.products import to_product_data
from shop.api.schemas import (
    ApiEnvelope,
    CardData,
    CardsAddData,
    CardsAddRequest,
    OrdersData,
    ProductActiveRequest,
    ProductSaveRequest,
    ProductSortRequest,
    ProductsData,
    SweepData,
    UserAdminData,
    UserBlockRequest,
    UsersData,
)
from shop.enums import CheckoutError, OrderStatus
from shop.services import aggregates, ledger, orders, sweeper

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================
# 商品
# ============================================================


@router.get("/products", response_model=ApiEnvelope)
def list_products(session: SessionDep, _: CurrentAdmin) -> ApiEnvelope:
    """全部商品（含下架）"""
    rows = crud.product.list_all(session=session)
    data = [to_product_data(p) for p in rows]
    return ApiEnvelope(data=ProductsData(data=data, count=len(data)))


@router.post("/products", response_model=ApiEnvelope)
def save_product(session: SessionDep, admin: AdminCsrf, body: ProductSaveRequest) -> ApiEnvelope:
    """
    新建或更新商品（按 id）

    请求路径: POST /api/v1/admin/products
    """
    product = crud.product.save(
        session=session,
        product_id=body.id,
        name=body.name,
        price=body.price,
        description=body.description,
        category=body.category,
        image=body.image,
        purchase_limit=body.purchase_limit,
        is_shared=body.is_shared,
        sort_order=body.sort_order,
    )
    # 共享标记会影响库存口径
    product = aggregates.recalc(session, product.id) or product
    logger.info("Product saved by %s: %s", admin.username, product.id)
    return ApiEnvelope(data=to_product_data(product))


@router.post("/products/{product_id}/active", response_model=ApiEnvelope)
def set_active(
    session: SessionDep, _: AdminCsrf, product_id: str, body: ProductActiveRequest
) -> ApiEnvelope:
    product = crud.product.set_active(session=session, product_id=product_id, is_active=body.is_active)
    return ApiEnvelope(data=to_product_data(product))


@router.post("/products/{product_id}/sort", response_model=ApiEnvelope)
def set_sort_order(
    session: SessionDep, _: AdminCsrf, product_id: str, body: ProductSortRequest
) -> ApiEnvelope:
    product = crud.product.set_sort_order(
        session=session, product_id=product_id, sort_order=body.sort_order
    )
    return ApiEnvelope(data=to_product_data(product))


@router.delete("/products/{product_id}", response_model=ApiEnvelope)
def delete_product(session: SessionDep, admin: AdminCsrf, product_id: str) -> ApiEnvelope:
    """
    删除商品及其卡密（历史订单保留）

    Raises:
        AppError: 商品不存在（404101）、有卡密正在被预占（409103）
    """
    removed = ledger.delete_product(session, product_id)
    logger.info("Product deleted by %s: %s cards=%d", admin.username, product_id, removed)
    return ApiEnvelope(data={"deleted": True, "cards": removed})


@router.post("/products/{product_id}/recalc", response_model=ApiEnvelope)
def recalc_product(session: SessionDep, _: AdminCsrf, product_id: str) -> ApiEnvelope:
    """手动重算商品聚合值"""
    crud.product.get_or_404(session=session, product_id=product_id)
    product = aggregates.recalc(session, product_id)
    if product is None:
        product = crud.product.get_or_404(session=session, product_id=product_id)
    return ApiEnvelope(data=to_product_data(product))


# ============================================================
# 卡密
# ============================================================


@router.get("/products/{product_id}/cards", response_model=ApiEnvelope)
def list_cards(
    session: SessionDep,
    _: CurrentAdmin,
    product_id: str,
    include_used: bool = Query(default=False),
) -> ApiEnvelope:
    crud.product.get_or_404(session=session, product_id=product_id)
    rows = ledger.list_cards(session, product_id, include_used=include_used)
    return ApiEnvelope(data=[CardData.model_validate(c, from_attributes=True) for c in rows])


@router.post("/products/{product_id}/cards", response_model=ApiEnvelope)
def add_cards(
    session: SessionDep, admin: AdminCsrf, product_id: str, body: CardsAddRequest
) -> ApiEnvelope:
    """
    批量导入卡密（每行一个，忽略空行）

    请求路径: POST /api/v1/admin/products/{product_id}/cards
    """
    added = ledger.add_cards(session, product_id, body.cards)
    aggregates.recalc(session, product_id)
    logger.info("Cards imported by %s: product=%s count=%d", admin.username, product_id, added)
    return ApiEnvelope(data=CardsAddData(added=added))


@router.delete("/cards/{card_id}", response_model=ApiEnvelope)
def delete_card(session: SessionDep, _: AdminCsrf, card_id: int) -> ApiEnvelope:
    """
    删除卡密

    Raises:
        AppError: 卡密不存在（404102）、已使用（409101）、预占中（409102）
    """
    product_id = ledger.delete_card(session, card_id)
    aggregates.recalc(session, product_id)
    return ApiEnvelope(data={"deleted": True})


# ============================================================
# 订单
# ============================================================


@router.get("/orders", response_model=ApiEnvelope)
def list_orders(
    session: SessionDep,
    _: CurrentAdmin,
    status: OrderStatus | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
) -> ApiEnvelope:
    rows, count = crud.order.list_by_status(
        session=session, status=status, offset=(page - 1) * page_size, limit=page_size
    )
    return ApiEnvelope(data=OrdersData(data=[to_order_data(o) for o in rows], count=count))


@router.get("/orders/oversold", response_model=ApiEnvelope)
def list_oversold(session: SessionDep, _: CurrentAdmin) -> ApiEnvelope:
    """已收款但未发货的订单"""
    rows = orders.list_oversold(session)
    return ApiEnvelope(data=OrdersData(data=[to_order_data(o) for o in rows], count=len(rows)))


@router.post("/orders/{order_id}/refund", response_model=ApiEnvelope)
def refund_order(session: SessionDep, admin: AdminCsrf, order_id: str) -> ApiEnvelope:
    """
    标记退款（管理员已在网关后台完成退款）

    Raises:
        AppError: 订单不存在（404201）或状态不允许退款（409201）
    """
    order = orders.mark_refunded(session, order_id)
    logger.info("Order marked refunded by %s: %s", admin.username, order_id)
    return ApiEnvelope(data=to_order_data(order))


@router.post("/orders/{order_id}/fulfil", response_model=ApiEnvelope)
def fulfil_order(session: SessionDep, admin: AdminCsrf, order_id: str) -> ApiEnvelope:
    """
    手动补发已收款未发货的订单

    Raises:
        AppError: 订单不存在（404201）、不是 paid 状态（409202）、仍然没有库存（409001）
    """
    order = orders.fulfil_paid_order(session, order_id)
    if order is None:
        raise checkout_error(CheckoutError.out_of_stock)
    logger.info("Order fulfilled by %s: %s", admin.username, order_id)
    return ApiEnvelope(data=to_order_data(order))


@router.post("/sweep", response_model=ApiEnvelope)
def sweep(session: SessionDep, _: AdminCsrf) -> ApiEnvelope:
    """手动清理过期订单"""
    cancelled = sweeper.sweep(session)
    return ApiEnvelope(data=SweepData(cancelled=cancelled))


# ============================================================
# 用户
# ============================================================


@router.get("/users", response_model=ApiEnvelope)
def list_users(
    session: SessionDep,
    _: CurrentAdmin,
    q: str | None = Query(default=None, max_length=128),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
) -> ApiEnvelope:
    """用户列表（含订单数），可按用户 ID / 用户名 / 邮箱搜索"""
    rows, count = crud.user.list_with_order_counts(
        session=session, offset=(page - 1) * page_size, limit=page_size, q=q
    )
    data = [
        UserAdminData.model_validate({**user.model_dump(), "order_count": order_count})
        for user, order_count in rows
    ]
    return ApiEnvelope(data=UsersData(data=data, count=count))


@router.post("/users/{user_id}/block", response_model=ApiEnvelope)
def set_user_blocked(
    session: SessionDep, admin: AdminCsrf, user_id: str, body: UserBlockRequest
) -> ApiEnvelope:
    """
    封禁或解封用户

    Raises:
        AppError: 用户不存在（404401）
    """
    user = crud.user.set_blocked(session=session, user_id=user_id, is_blocked=body.is_blocked)
    logger.info("User %s by %s: %s", "blocked" if user.is_blocked else "unblocked", admin.username, user_id)
    return ApiEnvelope(data=UserAdminData.model_validate(user, from_attributes=True))

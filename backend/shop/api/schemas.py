"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
这些模型不是数据库表，只用于 API 数据交换。
"""
from __future__ import annotations

from decimal import Decimal  # 精确数值类型，用于金额
from typing import Any

from pydantic import BaseModel, Field

from shop.enums import NotificationType, OrderStatus

# ============================================================
# 通用响应模型
# ============================================================


class Message(BaseModel):
    message: str


class TokenPayload(BaseModel):
    """JWT Token 载荷，sub 为用户 ID"""
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 409002, "message": "stock_locked", "data": None}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


class CsrfData(BaseModel):
    csrf_token: str


# ============================================================
# 商品
# ============================================================


class ProductData(BaseModel):
    """
    商品数据

    stock / locked / sold: 列表页来自缓存聚合值，详情页为实时统计
    """
    id: str
    name: str
    description: str | None = None
    price: Decimal
    category: str | None = None
    image: str | None = None
    is_active: bool
    is_shared: bool
    purchase_limit: int | None = None
    sort_order: int
    stock: int
    locked: int
    sold: int


class ProductsData(BaseModel):
    data: list[ProductData]
    count: int


class ProductSaveRequest(BaseModel):
    """后台新建/更新商品"""
    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    description: str | None = None
    category: str | None = Field(default=None, max_length=64)
    image: str | None = Field(default=None, max_length=1024)
    purchase_limit: int | None = None  # <= 0 或为空表示不限购
    is_shared: bool = False
    sort_order: int | None = None


class ProductActiveRequest(BaseModel):
    is_active: bool


class ProductSortRequest(BaseModel):
    sort_order: int


# ============================================================
# 卡密
# ============================================================


class CardData(BaseModel):
    id: int
    product_id: str
    card_key: str
    is_used: bool
    reserved_order_id: str | None = None
    reserved_at: int | None = None
    used_at: int | None = None
    created_at: int


class CardsAddRequest(BaseModel):
    """批量导入卡密：每行一个"""
    cards: str = Field(min_length=1)


class CardsAddData(BaseModel):
    added: int


# ============================================================
# 订单
# ============================================================


class OrderCreateRequest(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    email: str | None = Field(default=None, max_length=255)


class OrderData(BaseModel):
    """
    订单数据

    card_key 只对订单所有者、管理员（以及游客订单）返回
    """
    order_id: str
    product_id: str
    product_name: str
    amount: Decimal
    email: str | None = None
    status: OrderStatus
    trade_no: str | None = None
    card_key: str | None = None
    quantity: int
    created_at: int
    paid_at: int | None = None
    delivered_at: int | None = None


class OrdersData(BaseModel):
    data: list[OrderData]
    count: int


class CheckoutForm(BaseModel):
    """浏览器以表单 POST 提交到网关"""
    action: str
    fields: dict[str, str]


class OrderCreateData(BaseModel):
    order: OrderData
    payment: CheckoutForm


class SweepData(BaseModel):
    cancelled: list[str]


# ============================================================
# 通知
# ============================================================


class NotificationData(BaseModel):
    id: int
    type: NotificationType
    title_key: str
    content_key: str
    data: dict[str, Any] | None = None
    is_read: bool
    created_at: int


class NotificationsData(BaseModel):
    data: list[NotificationData]
    unread: int


# ============================================================
# 用户（后台）
# ============================================================


class UserAdminData(BaseModel):
    """后台用户列表项"""
    user_id: str
    username: str | None = None
    email: str | None = None
    points: int
    is_blocked: bool
    created_at: int
    last_login_at: int
    order_count: int = 0


class UsersData(BaseModel):
    data: list[UserAdminData]
    count: int


class UserBlockRequest(BaseModel):
    is_blocked: bool

"""
订单模型模块

定义订单相关的数据库模型。
"""
from decimal import Decimal

from sqlalchemy import BigInteger, Column, Index, Integer, Numeric, String, Text
from sqlmodel import Field, SQLModel

from shop.enums import OrderStatus

from .base import now_ms


class Order(SQLModel, table=True):
    """
    订单模型

    一次购买尝试。订单只会改状态，从不删除（审计用）。

    字段说明：
    - order_id: 主键，随机生成的不透明订单号（同时作为网关的 out_trade_no）
    - product_id / product_name: 商品 ID 与下单时的商品名快照
    - amount: 下单时的价格快照
    - email: 买家邮箱（可选，游客限购按邮箱去重）
    - user_id / username: 登录用户（可为空，允许游客下单）
    - status: 订单状态，见 OrderStatus
    - trade_no: 网关交易号，支付成功后写入
    - card_key: 发货的卡密副本，仅在已发货后写入
    - quantity: 购买数量（默认 1）
    - points_used: 抵扣的积分
    - created_at / paid_at / delivered_at: 毫秒时间戳
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index("orders_status_created_at_idx", "status", "created_at"),
        Index("orders_user_status_created_at_idx", "user_id", "status", "created_at"),
        Index("orders_product_status_idx", "product_id", "status"),
    )

    order_id: str = Field(sa_column=Column(String(32), primary_key=True))
    product_id: str = Field(sa_column=Column(String(64), nullable=False))
    product_name: str = Field(sa_column=Column(String(255), nullable=False))
    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    email: str | None = Field(default=None, max_length=255)
    user_id: str | None = Field(default=None, max_length=64)
    username: str | None = Field(default=None, max_length=128)

    status: OrderStatus = Field(
        default=OrderStatus.pending, sa_column=Column(String(16), nullable=False)
    )
    trade_no: str | None = Field(default=None, max_length=128)
    card_key: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    points_used: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))

    created_at: int = Field(
        default_factory=now_ms,
        sa_column=Column(BigInteger, nullable=False),
    )
    paid_at: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    delivered_at: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))

"""
卡密（库存）模型模块
"""
from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlmodel import Field, SQLModel

from .base import now_ms


class Card(SQLModel, table=True):
    """
    卡密模型：一行即一个可兑换的秘密字符串，属于且仅属于一个商品

    三种状态（互斥）：
    - 空闲: is_used=false 且 reserved_order_id 为空（或 reserved_at 已超出预占窗口）
    - 预占: is_used=false 且 reserved_order_id 指向待支付订单，reserved_at 在窗口内
    - 已使用: is_used=true，reserved_order_id / reserved_at 必须为空

    预占超时的卡密在被清理之前仍带着 reserved_order_id，但逻辑上已经可以再次售出。
    """
    __tablename__ = "cards"
    __table_args__ = (
        Index("cards_product_used_reserved_idx", "product_id", "is_used", "reserved_at"),
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    product_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    card_key: str = Field(sa_column=Column(Text, nullable=False))
    is_used: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    reserved_order_id: str | None = Field(
        default=None, sa_column=Column(String(32), index=True, nullable=True)
    )
    reserved_at: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    used_at: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    created_at: int = Field(
        default_factory=now_ms,
        sa_column=Column(BigInteger, nullable=False),
    )

"""
站内通知模型模块
"""
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Column, ForeignKey, Index, Integer, String
from sqlmodel import Field, SQLModel

from shop.enums import NotificationType

from .base import now_ms


class Notification(SQLModel, table=True):
    """
    用户通知模型

    title_key / content_key 是前端翻译文案的 key，data 中是渲染文案所需的参数
    （如订单号、商品名）。
    """
    __tablename__ = "user_notifications"
    __table_args__ = (
        Index("user_notifications_user_read_idx", "user_id", "is_read", "created_at"),
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    user_id: str = Field(
        sa_column=Column(
            String(64),
            ForeignKey("login_users.user_id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    type: NotificationType = Field(sa_column=Column(String(32), nullable=False))
    title_key: str = Field(max_length=128)
    content_key: str = Field(max_length=128)
    data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    is_read: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    created_at: int = Field(
        default_factory=now_ms,
        sa_column=Column(BigInteger, nullable=False),
    )

"""
用户模型模块

用户身份来自外部 OAuth 登录，这里只记录登录过的用户。
"""
from sqlalchemy import BigInteger, Boolean, Column, Integer, String
from sqlmodel import Field, SQLModel

from .base import now_ms


class User(SQLModel, table=True):
    """
    登录用户模型

    字段说明：
    - user_id: OAuth 提供方的用户 ID（主键）
    - username: 用户名（管理员按用户名配置）
    - email: 邮箱（可选）
    - points: 积分余额
    - is_blocked: 是否被封禁，封禁用户不能下单
    - created_at / last_login_at: 毫秒时间戳
    """
    __tablename__ = "login_users"

    user_id: str = Field(sa_column=Column(String(64), primary_key=True))
    username: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=255)
    points: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    is_blocked: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    created_at: int = Field(
        default_factory=now_ms,
        sa_column=Column(BigInteger, nullable=False),
    )
    last_login_at: int = Field(
        default_factory=now_ms,
        sa_column=Column(BigInteger, nullable=False),
    )

"""
商品模型模块

定义商品（目录条目）的数据库模型。
"""
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, Numeric, String, Text
from sqlmodel import Field, SQLModel

from .base import now_ms


class Product(SQLModel, table=True):
    """
    商品模型

    字段说明：
    - id: 主键（稳定的字符串 key）
    - name / description / category / image: 展示信息
    - price: 价格（Numeric 保证精度，Python 侧为 Decimal）
    - is_active: 是否上架
    - sort_order: 排序（升序）
    - purchase_limit: 限购数量（按用户 ID 或邮箱统计已支付/已发货订单），为空表示不限购
    - is_shared: 共享商品，一个卡密可以无限次售出
    - stock_count / locked_count / sold_count: 库存、预占、销量的缓存聚合值，
      由聚合重算服务维护，首页列表直接读取，避免每次浏览都做关联子查询
    - created_at: 创建时间（毫秒）
    """
    __tablename__ = "products"
    __table_args__ = (
        Index("products_active_sort_idx", "is_active", "sort_order", "created_at"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    category: str | None = Field(default=None, max_length=64)
    image: str | None = Field(default=None, max_length=1024)

    is_active: bool = Field(
        default=True, sa_column=Column(Boolean, nullable=False, default=True)
    )
    sort_order: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    purchase_limit: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    is_shared: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )

    stock_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    locked_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    sold_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))

    created_at: int = Field(
        default_factory=now_ms,
        sa_column=Column(BigInteger, nullable=False),
    )

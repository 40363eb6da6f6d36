"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- product.py: 商品模型
- card.py: 卡密（库存）模型
- order.py: 订单模型
- user.py: 登录用户模型
- notification.py: 站内通知模型
"""
from sqlmodel import SQLModel

from .base import now_ms
from .card import Card
from .notification import Notification
from .order import Order
from .product import Product
from .user import User

__all__ = [
    "SQLModel",
    "now_ms",
    "Product",
    "Card",
    "Order",
    "User",
    "Notification",
]

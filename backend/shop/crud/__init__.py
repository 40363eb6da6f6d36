"""CRUD 操作模块"""
from . import notification, order, product, user

__all__ = ["notification", "order", "product", "user"]

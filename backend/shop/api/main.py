"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中，注册到主应用（shop/main.py）上。

路由模块说明：
- products: 前台商品列表、详情
- orders: 下单、我的订单、订单详情
- payment: 支付网关通知与支付完成跳转
- auth: CSRF 令牌
- notifications: 站内通知
- admin: 后台管理（商品、卡密、订单、清理）
- utils: 健康检查、就绪检查
"""
from fastapi import APIRouter

from shop.api.routes import (
    admin,
    auth,
    notifications,
    orders,
    payment,
    products,
    utils,
)

api_router = APIRouter()

api_router.include_router(products.router)  # /products/*
api_router.include_router(orders.router)  # /orders/*
api_router.include_router(payment.router)  # /payment/*
api_router.include_router(auth.router)  # /auth/*
api_router.include_router(notifications.router)  # /notifications/*
api_router.include_router(admin.router)  # /admin/*
api_router.include_router(utils.router)  # /utils/*

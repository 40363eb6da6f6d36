"""
商品路由模块

前台商品浏览：
- 商品列表：读取缓存的聚合值（库存 / 预占 / 销量）
- 商品详情：实时统计卡密库存

读之前先清理过期订单，让被超时订单占住的库存尽快回到可售状态。
"""
from __future__ import annotations

from fastapi import APIRouter

from shop import crud
from shop.api.deps import SessionDep
from shop.api.errors import not_found
from shop.api.schemas import ApiEnvelope, ProductData, ProductsData
from shop.models import Product, now_ms
from shop.services import ledger, sweeper
from shop.services.ledger import StockSnapshot

router = APIRouter(prefix="/products", tags=["products"])


def to_product_data(product: Product, snapshot: StockSnapshot | None = None) -> ProductData:
    """
    将商品模型转换为响应数据

    Args:
        product: 商品
        snapshot: 实时库存快照；为空时使用缓存的聚合值
    """
    if snapshot is not None:
        stock, locked = snapshot.stock, snapshot.locked
    else:
        stock, locked = product.stock_count, product.locked_count
    return ProductData(
        id=product.id,
        name=product.name,
        description=product.description,
        price=product.price,
        category=product.category,
        image=product.image,
        is_active=product.is_active,
        is_shared=product.is_shared,
        purchase_limit=product.purchase_limit,
        sort_order=product.sort_order,
        stock=stock,
        locked=locked,
        sold=product.sold_count,
    )


@router.get("", response_model=ApiEnvelope)
def list_products(session: SessionDep) -> ApiEnvelope:
    """
    上架商品列表

    请求路径: GET /api/v1/products
    """
    sweeper.sweep(session)
    rows = crud.product.list_active(session=session)
    data = [to_product_data(p) for p in rows]
    return ApiEnvelope(data=ProductsData(data=data, count=len(data)))


@router.get("/{product_id}", response_model=ApiEnvelope)
def get_product(session: SessionDep, product_id: str) -> ApiEnvelope:
    """
    商品详情（实时库存）

    请求路径: GET /api/v1/products/{product_id}

    Raises:
        AppError: 商品不存在或已下架时抛出 404101 错误
    """
    now = now_ms()
    sweeper.sweep(session, product_id=product_id, now=now)
    product = crud.product.get_or_404(session=session, product_id=product_id)
    if not product.is_active:
        # 下架商品对前台不可见
        raise not_found("Product", 404101)
    snapshot = ledger.stock_snapshot(session, product, now)
    return ApiEnvelope(data=to_product_data(product, snapshot))

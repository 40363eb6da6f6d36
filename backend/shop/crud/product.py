"""商品 CRUD 操作"""
from decimal import Decimal

from sqlmodel import Session, col, select

from shop.api.errors import not_found
from shop.models import Product


def get(*, session: Session, product_id: str) -> Product | None:
    return session.get(Product, product_id)


def get_or_404(*, session: Session, product_id: str) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise not_found("Product", 404101)
    return product


def list_active(*, session: Session) -> list[Product]:
    """前台商品列表：仅上架商品，按 sort_order、创建时间排序"""
    stmt = (
        select(Product)
        .where(Product.is_active == True)  # noqa: E712
        .order_by(col(Product.sort_order).asc(), col(Product.created_at).asc())
    )
    return list(session.exec(stmt).all())


def list_all(*, session: Session) -> list[Product]:
    stmt = select(Product).order_by(col(Product.sort_order).asc(), col(Product.created_at).asc())
    return list(session.exec(stmt).all())


def save(
    *,
    session: Session,
    product_id: str,
    name: str,
    price: Decimal,
    description: str | None = None,
    category: str | None = None,
    image: str | None = None,
    purchase_limit: int | None = None,
    is_shared: bool = False,
    sort_order: int | None = None,
) -> Product:
    """新建或更新商品（按 id upsert），聚合字段不在这里修改"""
    product = session.get(Product, product_id)
    if product is None:
        product = Product(id=product_id, name=name, price=price)
    product.name = name
    product.price = price
    product.description = description
    product.category = category
    product.image = image
    # 限购 <= 0 视为不限购
    product.purchase_limit = purchase_limit if purchase_limit and purchase_limit > 0 else None
    product.is_shared = is_shared
    if sort_order is not None:
        product.sort_order = sort_order
    session.add(product)
    session.commit()
    session.refresh(product)
    return product


def set_active(*, session: Session, product_id: str, is_active: bool) -> Product:
    product = get_or_404(session=session, product_id=product_id)
    product.is_active = is_active
    session.add(product)
    session.commit()
    session.refresh(product)
    return product


def set_sort_order(*, session: Session, product_id: str, sort_order: int) -> Product:
    product = get_or_404(session=session, product_id=product_id)
    product.sort_order = sort_order
    session.add(product)
    session.commit()
    session.refresh(product)
    return product

"""订单查询操作（状态变更在 shop.services.orders 中完成）"""
from sqlmodel import Session, col, func, select

from shop.enums import OrderStatus
from shop.models import Order


def get(*, session: Session, order_id: str) -> Order | None:
    return session.get(Order, order_id)


def list_for_user(
    *, session: Session, user_id: str, offset: int = 0, limit: int = 20
) -> tuple[list[Order], int]:
    """
    查询用户的订单（分页，按创建时间倒序）

    Returns:
        (订单列表, 总数)
    """
    count_stmt = select(func.count()).select_from(Order).where(Order.user_id == user_id)
    count = int(session.exec(count_stmt).one())
    stmt = (
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(col(Order.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    return list(session.exec(stmt).all()), count


def list_by_status(
    *, session: Session, status: OrderStatus | None = None, offset: int = 0, limit: int = 50
) -> tuple[list[Order], int]:
    """后台订单列表，可按状态过滤"""
    count_stmt = select(func.count()).select_from(Order)
    stmt = select(Order)
    if status is not None:
        count_stmt = count_stmt.where(Order.status == status.value)
        stmt = stmt.where(Order.status == status.value)
    count = int(session.exec(count_stmt).one())
    stmt = stmt.order_by(col(Order.created_at).desc()).offset(offset).limit(limit)
    return list(session.exec(stmt).all()), count


def get_for_update(*, session: Session, order_id: str) -> Order | None:
    """
    加行锁读取订单（SELECT ... FOR UPDATE），并覆盖会话中已有的旧实例

    支付回调、手动补发都先锁订单行再动卡密行，与超时清理的加锁顺序一致。
    """
    stmt = (
        select(Order)
        .where(Order.order_id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(stmt).first()

"""用户 CRUD 操作"""
from sqlalchemy import or_
from sqlmodel import Session, col, func, select

from shop.api.errors import not_found
from shop.models import Order, User, now_ms


def get(*, session: Session, user_id: str) -> User | None:
    """根据用户 ID 查询用户"""
    return session.get(User, user_id)


def record_login(
    *,
    session: Session,
    user_id: str,
    username: str | None = None,
    email: str | None = None,
) -> User:
    """记录一次登录：不存在则创建，存在则更新用户名和最后登录时间"""
    now = now_ms()
    user = session.get(User, user_id)
    if user is None:
        user = User(user_id=user_id, username=username, email=email, created_at=now, last_login_at=now)
    else:
        if username:
            user.username = username
        if email:
            user.email = email
        user.last_login_at = now
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def list_with_order_counts(
    *, session: Session, offset: int = 0, limit: int = 50, q: str | None = None
) -> tuple[list[tuple[User, int]], int]:
    """
    后台用户列表（按最后登录时间倒序），附带每个用户的订单数

    Args:
        q: 按用户 ID / 用户名 / 邮箱模糊搜索

    Returns:
        ([(用户, 订单数)], 总数)
    """
    order_counts = (
        select(Order.user_id, func.count().label("order_count"))
        .group_by(Order.user_id)
        .subquery()
    )
    stmt = select(User, func.coalesce(order_counts.c.order_count, 0)).outerjoin(
        order_counts, order_counts.c.user_id == User.user_id
    )
    count_stmt = select(func.count()).select_from(User)
    if q:
        pattern = f"%{q.strip()}%"
        cond = or_(
            col(User.user_id).ilike(pattern),
            col(User.username).ilike(pattern),
            col(User.email).ilike(pattern),
        )
        stmt = stmt.where(cond)
        count_stmt = count_stmt.where(cond)
    count = int(session.exec(count_stmt).one())
    stmt = stmt.order_by(col(User.last_login_at).desc()).offset(offset).limit(limit)
    rows = [(user, int(n)) for user, n in session.exec(stmt).all()]
    return rows, count


def set_blocked(*, session: Session, user_id: str, is_blocked: bool) -> User:
    """封禁/解封用户，封禁后不能下单"""
    user = session.get(User, user_id)
    if user is None:
        raise not_found("User", 404401)
    user.is_blocked = is_blocked
    session.add(user)
    session.commit()
    session.refresh(user)
    return user

"""站内通知 CRUD 操作"""
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, col, func, select

from shop.enums import NotificationType
from shop.models import Notification


def create(
    *,
    session: Session,
    user_id: str | None,
    type: NotificationType,
    title_key: str,
    content_key: str,
    data: dict[str, Any] | None = None,
) -> Notification | None:
    """创建通知；游客订单没有 user_id，直接跳过"""
    if not user_id:
        return None
    row = Notification(
        user_id=user_id,
        type=type,
        title_key=title_key,
        content_key=content_key,
        data=data,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def list_for_user(*, session: Session, user_id: str, limit: int = 20) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(col(Notification.created_at).desc(), col(Notification.id).desc())
        .limit(limit)
    )
    return list(session.exec(stmt).all())


def unread_count(*, session: Session, user_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
    )
    return int(session.exec(stmt).one())


def mark_read(*, session: Session, user_id: str, notification_id: int) -> bool:
    """标记单条通知为已读，只能操作自己的通知"""
    result = session.exec(  # type: ignore[call-overload]
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
    )
    session.commit()
    return result.rowcount > 0


def mark_all_read(*, session: Session, user_id: str) -> int:
    result = session.exec(  # type: ignore[call-overload]
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True)
    )
    session.commit()
    return result.rowcount

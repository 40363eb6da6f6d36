"""
站内通知路由模块

订单发货、已收款未发货、退款时会给登录用户写入通知。
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from shop import crud
from shop.api.deps import CurrentUser, SessionDep
from shop.api.errors import not_found
from shop.api.schemas import ApiEnvelope, NotificationData, NotificationsData

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=ApiEnvelope)
def list_notifications(
    session: SessionDep,
    current_user: CurrentUser,
    limit: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    """
    最近的通知（按时间倒序）以及未读数量

    请求路径: GET /api/v1/notifications
    """
    rows = crud.notification.list_for_user(session=session, user_id=current_user.user_id, limit=limit)
    unread = crud.notification.unread_count(session=session, user_id=current_user.user_id)
    data = [NotificationData.model_validate(n, from_attributes=True) for n in rows]
    return ApiEnvelope(data=NotificationsData(data=data, unread=unread))


@router.get("/unread-count", response_model=ApiEnvelope)
def unread_count(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    count = crud.notification.unread_count(session=session, user_id=current_user.user_id)
    return ApiEnvelope(data={"unread": count})


@router.post("/read-all", response_model=ApiEnvelope)
def read_all(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    updated = crud.notification.mark_all_read(session=session, user_id=current_user.user_id)
    return ApiEnvelope(data={"updated": updated})


@router.post("/{notification_id}/read", response_model=ApiEnvelope)
def read_one(session: SessionDep, current_user: CurrentUser, notification_id: int) -> ApiEnvelope:
    """
    标记单条通知为已读

    Raises:
        AppError: 通知不存在或不属于当前用户时抛出 404301 错误
    """
    ok = crud.notification.mark_read(
        session=session, user_id=current_user.user_id, notification_id=notification_id
    )
    if not ok:
        raise not_found("Notification", 404301)
    return ApiEnvelope(data={"read": True})

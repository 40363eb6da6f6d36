"""
认证路由模块

用户身份由外部 OAuth 登录提供，登录回调通过 security.create_access_token
签发 JWT。这里只提供与登录身份绑定的 CSRF 令牌。
"""
from __future__ import annotations

from fastapi import APIRouter

from shop.api.deps import CurrentUser
from shop.api.schemas import ApiEnvelope, CsrfData
from shop.core import security

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/csrf", response_model=ApiEnvelope)
def csrf(current_user: CurrentUser) -> ApiEnvelope:
    """
    获取 CSRF 令牌

    下单和后台写操作需要在请求头 X-CSRF-Token 中携带。

    请求路径: GET /api/v1/auth/csrf
    """
    return ApiEnvelope(data=CsrfData(csrf_token=security.generate_csrf_token(current_user.user_id)))

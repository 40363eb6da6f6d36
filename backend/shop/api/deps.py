"""
FastAPI 依赖注入模块

提供可复用的依赖项：
- 数据库会话
- 当前用户（必须登录 / 可选登录 / 管理员）
- CSRF 校验
- 支付网关通知参数
"""
from collections.abc import Generator
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from shop.api.errors import AppError, checkout_error
from shop.api.schemas import TokenPayload
from shop.core import security
from shop.core.config import settings
from shop.core.db import engine
from shop.enums import CheckoutError
from shop.models import User

# 从请求头 Authorization: Bearer <token> 中提取 token
# auto_error=False：游客也能访问部分接口，缺少 token 时由下面的依赖决定如何处理
reusable_oauth2 = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。

    Yields:
        Session: 数据库会话对象
    """
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials | None, Depends(reusable_oauth2)]


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )


def _user_from_token(session: Session, token: HTTPAuthorizationCredentials) -> User:
    try:
        payload = jwt.decode(
            token.credentials, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise _unauthorized()
    if not token_data.sub:
        raise _unauthorized()
    user = session.get(User, token_data.sub)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户（依赖注入）

    从 JWT token 中解析用户 ID，并查询数据库获取用户对象。

    Raises:
        HTTPException: 缺少 token、token 无效或用户不存在时返回 401
    """
    if token is None:
        raise _unauthorized()
    return _user_from_token(session, token)


def get_optional_user(session: SessionDep, token: TokenDep) -> User | None:
    """获取当前用户；未携带 token 时返回 None（携带了无效 token 仍返回 401）"""
    if token is None:
        return None
    return _user_from_token(session, token)


CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_optional_user)]


def is_admin(user: User | None) -> bool:
    """管理员按用户名配置（ADMIN_USERS，大小写不敏感）"""
    if user is None or not user.username:
        return False
    return user.username.lower() in settings.ADMIN_USERS


def get_current_admin(current_user: CurrentUser) -> User:
    if not is_admin(current_user):
        raise AppError(code=403101, message="Admin only", status_code=403)
    return current_user


CurrentAdmin = Annotated[User, Depends(get_current_admin)]


def verify_csrf(
    current_user: CurrentUser,
    x_csrf_token: Annotated[str | None, Header()] = None,
) -> User:
    """
    校验 CSRF 令牌（请求头 X-CSRF-Token）

    令牌与登录身份绑定，见 shop.core.security.generate_csrf_token。

    Raises:
        AppError: 令牌缺失或不匹配时返回 403001
    """
    if not security.verify_csrf_token(current_user.user_id, x_csrf_token):
        raise checkout_error(CheckoutError.csrf)
    return current_user


CsrfUser = Annotated[User, Depends(verify_csrf)]


async def gateway_params(request: Request) -> dict[str, str]:
    """
    读取支付网关的通知参数

    网关可能用 GET（查询字符串）或 POST 表单（urlencoded 或 multipart）回调，
    两者合并，表单中的同名参数优先；表单里的文件字段忽略。
    """
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


GatewayParams = Annotated[dict[str, str], Depends(gateway_params)]


def get_admin_with_csrf(current_user: CsrfUser) -> User:
    """后台写操作：管理员身份 + CSRF 校验"""
    return get_current_admin(current_user)


AdminCsrf = Annotated[User, Depends(get_admin_with_csrf)]

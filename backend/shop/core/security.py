"""
安全模块

- JWT 访问令牌：由 OAuth 登录回调签发，sub 为用户 ID
- CSRF 令牌：与登录身份绑定的 HMAC，下单和后台写操作时校验
"""
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from shop.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta | None = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def generate_csrf_token(subject: str) -> str:
    """
    生成 CSRF 令牌

    令牌是用户 ID 的 HMAC-SHA256 签名，无需服务端存储；
    SECRET_KEY 轮换后旧令牌自动失效。

    Args:
        subject: 用户 ID

    Returns:
        十六进制令牌字符串
    """
    message = f"csrf:{subject}".encode()
    return hmac.new(settings.SECRET_KEY.encode(), message, hashlib.sha256).hexdigest()


def verify_csrf_token(subject: str, token: str | None) -> bool:
    if not token:
        return False
    return hmac.compare_digest(generate_csrf_token(subject), token)

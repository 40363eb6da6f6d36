"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。
"""
from __future__ import annotations

from shop.enums import CheckoutError


class AppError(Exception):
    """
    应用自定义异常类

    用于业务逻辑中的错误处理，包含：
    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息
    - status_code: HTTP 状态码（400, 404, 409 等）

    使用示例：
        raise AppError(code=404101, message="Product not found", status_code=404)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


# 下单失败原因 -> (业务错误码, HTTP 状态码)
# 库存不足、限购等是正常业务结果，一律返回 4xx，不会出现 5xx
_CHECKOUT_ERRORS: dict[CheckoutError, tuple[int, int]] = {
    CheckoutError.out_of_stock: (409001, 409),
    CheckoutError.stock_locked: (409002, 409),
    CheckoutError.limit: (403002, 403),
    CheckoutError.inactive: (400301, 400),
    CheckoutError.csrf: (403001, 403),
}


def checkout_error(reason: CheckoutError) -> AppError:
    """
    把下单失败原因转换为 AppError（便捷函数）

    message 直接使用原因代码（如 "stock_locked"），前端据此展示不同文案：
    “有人正在付款，请稍后再试” 与 “已售罄” 是两种不同的提示。
    """
    code, status_code = _CHECKOUT_ERRORS[reason]
    return AppError(code=code, message=reason.value, status_code=status_code)


def not_found(what: str, code: int) -> AppError:
    return AppError(code=code, message=f"{what} not found", status_code=404)

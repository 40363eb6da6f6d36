"""
支付网关回调路由

- notify: 网关异步通知（GET 或 POST 表单），验签后处理支付成功
- return: 支付完成后浏览器跳转，重定向到前端订单页

notify 的响应体是网关协议的一部分：返回纯文本 success 表示已收到，
网关收到其它内容会重试。签名错误返回 400 fail。
"""
from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, Cookie
from fastapi.responses import PlainTextResponse, RedirectResponse

from shop.api.deps import GatewayParams, SessionDep
from shop.api.routes.orders import PENDING_ORDER_COOKIE
from shop.core.config import settings
from shop.services import orders
from shop.services.gateway import TRADE_SUCCESS, get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])


@router.api_route("/notify", methods=["GET", "POST"], response_class=PlainTextResponse)
def notify(session: SessionDep, params: GatewayParams) -> PlainTextResponse:
    """
    支付网关异步通知

    请求路径: GET|POST /api/v1/payment/notify

    重复通知、未知订单、非成功状态都返回 success（已收到），避免网关无限重试；
    业务处理结果记录在日志中。
    """
    if not get_gateway().verify(params):
        logger.warning(
            "Payment notify signature mismatch: out_trade_no=%s trade_no=%s",
            params.get("out_trade_no"),
            params.get("trade_no"),
        )
        return PlainTextResponse("fail", status_code=400)

    order_id = params.get("out_trade_no") or ""
    trade_status = params.get("trade_status") or ""
    if order_id and trade_status == TRADE_SUCCESS:
        outcome = orders.handle_payment_success(session, order_id, params.get("trade_no") or None)
        logger.info("Payment notify handled: order=%s result=%s", order_id, outcome.result.value)
    else:
        logger.info("Payment notify skipped: order=%s trade_status=%s", order_id, trade_status)
    return PlainTextResponse("success")


def _redirect_to_order(order_id: str | None) -> RedirectResponse:
    base = settings.FRONTEND_HOST.rstrip("/")
    if order_id:
        return RedirectResponse(f"{base}/order/{quote(order_id, safe='')}", status_code=302)
    return RedirectResponse(f"{base}/orders", status_code=302)


@router.get("/return")
def payment_return(
    out_trade_no: str | None = None,
    pending_order: str | None = Cookie(default=None, alias=PENDING_ORDER_COOKIE),
) -> RedirectResponse:
    """
    支付完成跳转（不带订单号）

    依次尝试查询参数 out_trade_no、pending_order cookie，都没有则跳转到订单列表。
    """
    return _redirect_to_order(out_trade_no or pending_order)


@router.get("/return/{order_id}")
def payment_return_order(order_id: str) -> RedirectResponse:
    """支付完成跳转到指定订单"""
    return _redirect_to_order(order_id)

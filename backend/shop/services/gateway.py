"""
EPay 支付网关服务

网关协议（外部契约）：
- 下单：浏览器以表单 POST 把订单参数提交到网关 PAY_URL
- 通知：网关回调 notify_url，参数中 out_trade_no 即订单号，trade_status 为 TRADE_SUCCESS 表示支付成功
- 签名：去掉 sign / sign_type 和空值后按 key 排序，拼成 k=v&k=v，末尾拼接商户密钥后取 MD5

文档: https://credit.linux.do/epay
"""

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any

from shop.core.config import settings

logger = logging.getLogger(__name__)

TRADE_SUCCESS = "TRADE_SUCCESS"

_UNSIGNED_KEYS = {"sign", "sign_type"}


class EPayGateway:
    """EPay 网关封装（签名、验签、构造下单表单）"""

    def __init__(self, merchant_id: str, merchant_key: str, pay_url: str, pay_type: str = "epay"):
        """
        初始化网关

        Args:
            merchant_id: 商户 ID（pid）
            merchant_key: 商户密钥
            pay_url: 网关下单地址
            pay_type: 支付方式
        """
        self.merchant_id = merchant_id
        self.merchant_key = merchant_key
        self.pay_url = pay_url
        self.pay_type = pay_type

    def sign(self, params: dict[str, Any]) -> str:
        """
        计算签名

        Args:
            params: 请求参数（sign / sign_type 和空值不参与签名）

        Returns:
            32 位小写 MD5 签名
        """
        filtered = sorted(
            (key, str(value))
            for key, value in params.items()
            if key not in _UNSIGNED_KEYS and value is not None and str(value) != ""
        )
        payload = "&".join(f"{key}={value}" for key, value in filtered)
        return hashlib.md5(f"{payload}{self.merchant_key}".encode()).hexdigest()

    def verify(self, params: dict[str, Any]) -> bool:
        """
        验证网关通知的签名

        Returns:
            签名是否正确
        """
        received = params.get("sign")
        if not received:
            return False
        return hmac.compare_digest(str(received).lower(), self.sign(params))

    def checkout_fields(
        self,
        *,
        order_id: str,
        name: str,
        amount: Decimal,
        notify_url: str,
        return_url: str,
    ) -> dict[str, str]:
        """
        构造提交到网关的下单表单字段（含签名）

        Args:
            order_id: 订单号（out_trade_no）
            name: 商品名
            amount: 金额
            notify_url: 异步通知地址
            return_url: 支付完成后浏览器跳转地址

        Returns:
            表单字段
        """
        fields = {
            "pid": self.merchant_id,
            "type": self.pay_type,
            "out_trade_no": order_id,
            "notify_url": notify_url,
            "return_url": return_url,
            "name": name,
            "money": f"{Decimal(amount):.2f}",
            "sign_type": "MD5",
        }
        fields["sign"] = self.sign(fields)
        return fields


def get_gateway() -> EPayGateway:
    """按当前配置创建网关实例"""
    return EPayGateway(
        merchant_id=settings.MERCHANT_ID,
        merchant_key=settings.MERCHANT_KEY,
        pay_url=settings.PAY_URL,
        pay_type=settings.PAY_TYPE,
    )

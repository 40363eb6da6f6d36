"""
枚举类型定义模块

定义应用中使用的所有枚举类型。
所有枚举都继承自 str 和 Enum，这样既可以用作字符串，又具有枚举的特性。
"""
from enum import Enum  # 枚举类型，用于定义固定的选项集合


class OrderStatus(str, Enum):
    """
    订单状态枚举

    定义订单的处理状态：
    - pending: 待支付（已预占卡密，等待网关回调）
    - paid: 已支付但未发货（支付成功时库存已耗尽，需要管理员手动补发）
    - delivered: 已发货（卡密已写入订单）
    - cancelled: 已取消（支付超时被清理）
    - refunded: 已退款（管理员确认网关退款后标记）
    """
    pending = "pending"
    paid = "paid"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


# 订单状态机：允许的状态迁移
# cancelled -> delivered/paid：订单被超时清理后网关才送达支付成功通知，钱已到账必须履约
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset(
        {OrderStatus.delivered, OrderStatus.paid, OrderStatus.cancelled}
    ),
    OrderStatus.paid: frozenset({OrderStatus.delivered, OrderStatus.refunded}),
    OrderStatus.delivered: frozenset({OrderStatus.refunded}),
    OrderStatus.cancelled: frozenset({OrderStatus.delivered, OrderStatus.paid}),
    OrderStatus.refunded: frozenset(),
}

# 计入销量的订单状态
SOLD_STATUSES = (OrderStatus.paid, OrderStatus.delivered)


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    """判断订单能否从 current 迁移到 target"""
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


class CheckoutError(str, Enum):
    """
    下单失败原因

    这些是正常的业务结果，不是异常：
    - out_of_stock: 没有可售卡密，也没有被预占的卡密
    - stock_locked: 卡密都被其他买家预占（或并发抢占失败），稍后可能释放
    - limit: 超过限购数量
    - inactive: 商品已下架
    - csrf: CSRF 校验失败
    """
    out_of_stock = "out_of_stock"
    stock_locked = "stock_locked"
    limit = "limit"
    inactive = "inactive"
    csrf = "csrf"


class PaymentResult(str, Enum):
    """
    支付成功回调的处理结果

    - delivered: 已发货
    - paid: 已收款但无卡密可发（超卖），等待管理员处理
    - ignored: 订单不存在或已处理过（重复回调）
    """
    delivered = "delivered"
    paid = "paid"
    ignored = "ignored"


class NotificationType(str, Enum):
    """用户站内通知类型"""
    order_delivered = "order_delivered"
    order_paid_undelivered = "order_paid_undelivered"
    order_refunded = "order_refunded"

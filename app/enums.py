"""
枚举类型定义模块

定义订单生命周期和支付对账中使用的所有枚举类型。
所有枚举都继承自 str 和 Enum，这样既可以用作字符串，又具有枚举的特性。
"""
from enum import Enum  # 枚举类型，用于定义固定的选项集合


class OrderStatus(str, Enum):
    """
    订单状态枚举

    状态只能通过状态机（app/services/state_machine.py）中的转换表变更：
    - pending: 待支付
    - processing: 已支付，处理中
    - shipped: 已发货
    - delivered: 已送达
    - cancelled: 已取消（终态）
    - refunded: 已退款（终态）
    """
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


class PaymentStatus(str, Enum):
    """
    支付状态枚举

    - unpaid: 未支付
    - paid: 已支付
    - failed: 支付失败
    - refunded: 已退款
    """
    unpaid = "unpaid"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class PaymentProvider(str, Enum):
    """支付渠道"""
    stripe = "stripe"
    paypal = "paypal"


class CanonicalEventType(str, Enum):
    """
    规范化事件类型枚举

    两个支付渠道的 webhook 事件都会被映射到这个固定集合。
    无法识别的渠道事件统一映射为 unmapped（确认接收，但不做任何变更）。
    """
    payment_succeeded = "payment_succeeded"
    payment_failed = "payment_failed"
    refund_completed = "refund_completed"
    method_attached = "method_attached"
    method_detached = "method_detached"
    order_approved = "order_approved"
    unmapped = "unmapped"


class OrderTrigger(str, Enum):
    """
    订单状态转换触发器

    前三个来自支付渠道的 webhook，manual_cancel 来自用户请求，
    fulfillment_* 来自外部履约系统（通过管理员接口进入）。
    """
    payment_succeeded = "payment_succeeded"
    payment_failed = "payment_failed"
    refund_completed = "refund_completed"
    manual_cancel = "manual_cancel"
    fulfillment_shipped = "fulfillment_shipped"
    fulfillment_delivered = "fulfillment_delivered"


class TransitionSource(str, Enum):
    """审计记录中状态变更的来源"""
    webhook = "webhook"
    client = "client"
    admin = "admin"


class UserRole(str, Enum):
    """
    用户角色枚举

    - user: 普通用户，只能操作自己的资源
    - admin: 管理员，可以操作所有资源
    """
    user = "user"
    admin = "admin"


class ResourceKind(str, Enum):
    """受所有权保护的资源类型"""
    order = "order"
    payment_method = "payment_method"

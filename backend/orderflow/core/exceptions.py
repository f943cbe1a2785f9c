"""
业务异常：校验类错误、业务规则错误、外部依赖（消息网关）错误

约定：折扣引擎与订单账本直接抛出；支付编排、频道清理与过期清理只记录日志并降级，
不会把 MessagingError 抛给调用方。
"""


class OrderflowError(Exception):
    """所有业务异常的基类"""

    default_message = "业务处理失败"
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


# ---------- 校验类：在任何修改之前抛出，调用方修正状态后可重试 ---------- #
class ValidationError(OrderflowError):
    default_message = "请求校验失败"


class CartNotFoundError(ValidationError):
    default_message = "购物车不存在"
    status_code = 404


class CartNotActiveError(ValidationError):
    default_message = "购物车不是可结算状态"
    status_code = 409


class EmptyCartError(ValidationError):
    default_message = "购物车为空"


class ProductNotFoundError(ValidationError):
    default_message = "商品不存在或已下架"
    status_code = 404


class OrderNotFoundError(ValidationError):
    default_message = "订单不存在"
    status_code = 404


class OrderNotApprovedError(ValidationError):
    default_message = "订单尚未批准"
    status_code = 409


class ReceiptNotFoundError(ValidationError):
    default_message = "付款凭证不存在"
    status_code = 404


class ReceiptNotPendingError(ValidationError):
    default_message = "付款凭证已被审核"
    status_code = 409


class InvalidOrderTransitionError(ValidationError):
    default_message = "订单状态不允许此操作"
    status_code = 409

    def __init__(self, message: str = None, current_status=None):
        super().__init__(message)
        self.current_status = current_status


# ---------- 业务规则类：校验之后、修改之前抛出，保证没有部分扣减库存 ---------- #
class BusinessRuleError(OrderflowError):
    default_message = "不满足业务规则"
    status_code = 409


class InsufficientStockError(BusinessRuleError):
    default_message = "一件或多件商品库存不足"

    # 面向买家的提示
    user_message = "部分商品暂时无货，请调整购物车后重试"


class DiscountUnavailableError(BusinessRuleError):
    default_message = "折扣已达到使用上限"


# ---------- 外部依赖 ---------- #
class MessagingError(OrderflowError):
    """消息网关调用失败（网络错误或 Bot API 返回 ok=false）"""

    default_message = "消息发送失败"
    status_code = 502

    def __init__(self, message: str = None, method: str = None, error_code: int = None):
        super().__init__(message)
        self.method = method
        self.error_code = error_code

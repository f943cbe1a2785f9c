"""
订单相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from orderflow.models.order import OrderStatus


class CheckoutRequest(BaseModel):
    """结算请求"""
    user_id: int
    cart_id: int
    code: Optional[str] = Field(None, description="手动折扣码")


class CreateOrderResult(BaseModel):
    """订单创建结果"""
    order_id: int
    subtotal: int
    discount_total: int
    grand_total: int


class OrderItemResponse(BaseModel):
    product_id: int
    qty: int
    unit_price_snapshot: int
    line_total: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """订单响应"""
    id: int
    user_id: int
    cart_id: Optional[int] = None
    subtotal: int
    discount_total: int
    grand_total: int
    status: OrderStatus
    invite_link: Optional[str] = None
    invite_sent_at: Optional[datetime] = None
    invite_expires_at: Optional[datetime] = None
    channel_message_id: Optional[int] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class ApprovalResult(BaseModel):
    """审批结果：success=False 且 status=APPROVED 表示稍后重试，而非失败"""
    success: bool
    status: OrderStatus
    invite_link: Optional[str] = None
    direct_message_id: Optional[int] = None
    error: Optional[str] = None


class OrderRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

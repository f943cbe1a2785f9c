"""
订单事件负载：按 event_type 区分的联合类型，读写两端都有静态结构
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from orderflow.models.order_event import ActorType
from orderflow.schemas.discount import AppliedDiscount


class OrderCreatedPayload(BaseModel):
    event_type: Literal["order_created"] = "order_created"
    cart_id: int
    subtotal: int
    discount_total: int
    grand_total: int
    applied_discounts: List[AppliedDiscount] = []


class OrderApprovedPayload(BaseModel):
    event_type: Literal["order_approved"] = "order_approved"


class OrderRejectedPayload(BaseModel):
    event_type: Literal["order_rejected"] = "order_rejected"
    reason: Optional[str] = None


class ApprovalFallbackDirectPayload(BaseModel):
    event_type: Literal["approval_fallback_direct"] = "approval_fallback_direct"
    reason: str


class InviteSentPayload(BaseModel):
    event_type: Literal["invite_sent"] = "invite_sent"
    invite_link: str
    channel_message_id: Optional[int] = None
    expires_at: datetime


class InviteCreationFailedPayload(BaseModel):
    event_type: Literal["invite_creation_failed"] = "invite_creation_failed"
    channel_message_id: Optional[int] = None
    error: Optional[str] = None


class PaymentDetailsSentDirectPayload(BaseModel):
    event_type: Literal["payment_details_sent_direct"] = "payment_details_sent_direct"
    direct_message_id: Optional[int] = None
    delete_at: Optional[datetime] = None


class ReceiptSubmittedPayload(BaseModel):
    event_type: Literal["receipt_submitted"] = "receipt_submitted"
    receipt_id: int
    superseded_receipt_ids: List[int] = []


class ReceiptApprovedPayload(BaseModel):
    event_type: Literal["receipt_approved"] = "receipt_approved"
    receipt_id: int


class ReceiptRejectedPayload(BaseModel):
    event_type: Literal["receipt_rejected"] = "receipt_rejected"
    receipt_id: int
    reason: Optional[str] = None


class InviteExpiredPayload(BaseModel):
    event_type: Literal["invite_expired"] = "invite_expired"
    expired_at: Optional[datetime] = None


class OrderCompletedPayload(BaseModel):
    event_type: Literal["order_completed"] = "order_completed"


OrderEventPayload = Annotated[
    Union[
        OrderCreatedPayload,
        OrderApprovedPayload,
        OrderRejectedPayload,
        ApprovalFallbackDirectPayload,
        InviteSentPayload,
        InviteCreationFailedPayload,
        PaymentDetailsSentDirectPayload,
        ReceiptSubmittedPayload,
        ReceiptApprovedPayload,
        ReceiptRejectedPayload,
        InviteExpiredPayload,
        OrderCompletedPayload,
    ],
    Field(discriminator="event_type"),
]

_payload_adapter = TypeAdapter(OrderEventPayload)


def parse_order_event(event) -> OrderEventPayload:
    """从 OrderEvent 行还原强类型负载。旧数据缺少 event_type 时以列值补齐。"""
    data = dict(event.payload or {})
    data.setdefault("event_type", event.event_type)
    return _payload_adapter.validate_python(data)


class OrderEventItem(BaseModel):
    """订单事件（API 输出）"""
    id: int
    order_id: int
    actor_type: ActorType
    actor_id: Optional[int] = None
    event_type: str
    payload: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderEventListResponse(BaseModel):
    items: List[OrderEventItem]
    total: int

"""
订单API：查询、审批、拒绝、完成、提交付款凭证
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_client_gateway, get_notifications, require_manager
from orderflow.core.database import get_db
from orderflow.models.user import Manager
from orderflow.schemas.events import OrderEventItem, OrderEventListResponse
from orderflow.schemas.order import ApprovalResult, OrderRejectRequest, OrderResponse
from orderflow.schemas.receipt import ReceiptCreate, ReceiptResponse
from orderflow.services.approval_service import ApprovalService
from orderflow.services.event_service import list_order_events
from orderflow.services.messaging import MessagingGateway
from orderflow.services.notification_service import NotificationService
from orderflow.services.order_service import OrderService
from orderflow.services.receipt_service import ReceiptService

router = APIRouter()


async def _order_or_404(db: AsyncSession, order_id: int):
    order = await OrderService(db).get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="订单不存在")
    return order


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
):
    """订单详情（含明细快照）"""
    return await _order_or_404(db, order_id)


@router.get("/{order_id}/events", response_model=OrderEventListResponse)
async def get_order_events(
    order_id: int,
    event_type: str = Query(None, description="按事件类型筛选"),
    db: AsyncSession = Depends(get_db),
):
    """订单审计事件（按时间顺序）"""
    await _order_or_404(db, order_id)
    events = await list_order_events(db, order_id, event_type)
    return OrderEventListResponse(
        items=[OrderEventItem.model_validate(e) for e in events],
        total=len(events),
    )


@router.post("/{order_id}/approve", response_model=ApprovalResult)
async def approve_order(
    order_id: int,
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
    client_gateway: MessagingGateway = Depends(get_client_gateway),
    notifications: NotificationService = Depends(get_notifications),
):
    """审批订单：success=false 且 status=APPROVED 表示邀请稍后自动补发"""
    service = ApprovalService(db, client_gateway, notifications)
    return await service.approve_order(order_id, manager.id)


@router.post("/{order_id}/reject", response_model=OrderResponse)
async def reject_order(
    order_id: int,
    body: OrderRejectRequest,
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
    client_gateway: MessagingGateway = Depends(get_client_gateway),
    notifications: NotificationService = Depends(get_notifications),
):
    service = ApprovalService(db, client_gateway, notifications)
    await service.reject_order(order_id, manager.id, body.reason)
    return await _order_or_404(db, order_id)


@router.post("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(
    order_id: int,
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """履约完成：PAID -> COMPLETED"""
    return await OrderService(db).complete_order(order_id, actor_id=manager.id)


@router.post("/{order_id}/receipts", response_model=ReceiptResponse, status_code=status.HTTP_201_CREATED)
async def submit_receipt(
    order_id: int,
    body: ReceiptCreate,
    db: AsyncSession = Depends(get_db),
    client_gateway: MessagingGateway = Depends(get_client_gateway),
    notifications: NotificationService = Depends(get_notifications),
):
    """买家提交付款凭证"""
    service = ReceiptService(db, client_gateway, notifications)
    return await service.submit_receipt(order_id, body.user_id, body.file_id, body.caption)

"""
付款凭证审核API
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_client_gateway, get_notifications, require_manager
from orderflow.core.database import get_db
from orderflow.models.user import Manager
from orderflow.schemas.receipt import ReceiptRejectRequest, ReceiptResponse
from orderflow.services.messaging import MessagingGateway
from orderflow.services.notification_service import NotificationService
from orderflow.services.receipt_service import ReceiptService

router = APIRouter()


@router.post("/{receipt_id}/approve", response_model=ReceiptResponse)
async def approve_receipt(
    receipt_id: int,
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
    client_gateway: MessagingGateway = Depends(get_client_gateway),
    notifications: NotificationService = Depends(get_notifications),
):
    """凭证通过：订单 PAID，清理结算频道"""
    service = ReceiptService(db, client_gateway, notifications)
    return await service.approve_receipt(receipt_id, manager.id)


@router.post("/{receipt_id}/reject", response_model=ReceiptResponse)
async def reject_receipt(
    receipt_id: int,
    body: ReceiptRejectRequest,
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
    client_gateway: MessagingGateway = Depends(get_client_gateway),
    notifications: NotificationService = Depends(get_notifications),
):
    service = ReceiptService(db, client_gateway, notifications)
    return await service.reject_receipt(receipt_id, manager.id, body.reason)

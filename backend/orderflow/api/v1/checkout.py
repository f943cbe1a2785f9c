"""
结算API：价格预览与下单
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_notifications
from orderflow.core.database import get_db
from orderflow.schemas.discount import DiscountCalculationResult
from orderflow.schemas.order import CheckoutRequest, CreateOrderResult
from orderflow.services.checkout_service import CheckoutService
from orderflow.services.notification_service import NotificationService

router = APIRouter()


@router.post("/quote", response_model=DiscountCalculationResult)
async def quote(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
):
    """价格预览（不占用折扣名额）"""
    return await CheckoutService(db).quote(body.user_id, body.cart_id, body.code)


@router.post("", response_model=CreateOrderResult, status_code=status.HTTP_201_CREATED)
async def checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
):
    """下单：订单进入 AWAITING_APPROVAL 并通知管理员"""
    service = CheckoutService(db, notifications=notifications)
    return await service.checkout(body.user_id, body.cart_id, body.code)

"""
结算服务：折扣预览 + 下单（折扣引擎 -> 订单账本 -> 通知管理员）
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.clock import utcnow
from orderflow.schemas.discount import DiscountCalculationResult
from orderflow.schemas.order import CreateOrderResult
from orderflow.services.cart_service import CartService
from orderflow.services.discount_service import DiscountService
from orderflow.services.notification_service import NotificationService
from orderflow.services.order_service import OrderService

logger = logging.getLogger(__name__)


class CheckoutService:
    """结算服务类"""

    def __init__(
        self,
        db: AsyncSession,
        notifications: Optional[NotificationService] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.notifications = notifications
        self.carts = CartService(db, now=now)
        self.discounts = DiscountService(db, now=now)
        self.orders = OrderService(db, now=now)

    async def quote(self, user_id: int, cart_id: int, code: Optional[str] = None) -> DiscountCalculationResult:
        """价格预览：不占用折扣名额"""
        context = await self.carts.build_cart_context(cart_id, user_id)
        return await self.discounts.calculate_discounts(context, code)

    async def checkout(self, user_id: int, cart_id: int, code: Optional[str] = None) -> CreateOrderResult:
        quote = await self.quote(user_id, cart_id, code)
        result = await self.orders.create_order_from_cart(
            user_id=user_id,
            cart_id=cart_id,
            applied_discounts=quote.applied_discounts,
        )
        if self.notifications is not None:
            await self.notifications.notify_managers_new_order(result.order_id)
        return result

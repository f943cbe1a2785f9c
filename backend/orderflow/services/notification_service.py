"""
通知服务：管理员（新订单 / 新凭证）与买家（审批结果 / 凭证审核结果 / 过期）
所有发送失败只记录日志，不影响订单状态
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orderflow.core.config import settings
from orderflow.core.exceptions import MessagingError
from orderflow.models.order import Order, OrderItem
from orderflow.models.user import Manager
from orderflow.services import texts
from orderflow.services.messaging import MessagingGateway

logger = logging.getLogger(__name__)


async def order_currency(db: AsyncSession, order: Order) -> str:
    """订单币种：取第一条明细商品的币种"""
    result = await db.execute(
        select(OrderItem)
        .options(selectinload(OrderItem.product))
        .where(OrderItem.order_id == order.id)
        .order_by(OrderItem.id)
        .limit(1)
    )
    item = result.scalar_one_or_none()
    if item is not None and item.product is not None and item.product.currency:
        return item.product.currency
    return settings.DEFAULT_CURRENCY


class NotificationService:
    """通知服务类"""

    def __init__(self, db: AsyncSession, client_gateway: MessagingGateway, manager_gateway: MessagingGateway):
        self.db = db
        self.client_gateway = client_gateway
        self.manager_gateway = manager_gateway

    async def _load_order(self, order_id: int) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.user))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _notify_managers(self, text: str) -> int:
        result = await self.db.execute(select(Manager.tg_user_id).where(Manager.is_active.is_(True)))
        sent = 0
        for tg_user_id in result.scalars().all():
            try:
                await self.manager_gateway.send_message(tg_user_id, text)
                sent += 1
            except MessagingError as e:
                logger.warning("通知管理员失败 manager_tg=%s: %s", tg_user_id, e)
        return sent

    async def notify_buyer(self, order_id: int, text: str) -> bool:
        order = await self._load_order(order_id)
        if order is None or order.user is None:
            logger.warning("通知买家失败：订单或买家不存在 order_id=%s", order_id)
            return False
        try:
            await self.client_gateway.send_message(order.user.tg_user_id, text)
            return True
        except MessagingError as e:
            logger.warning("通知买家失败 order_id=%s: %s", order_id, e)
            return False

    async def notify_managers_new_order(self, order_id: int) -> int:
        order = await self._load_order(order_id)
        if order is None:
            return 0
        currency = await order_currency(self.db, order)
        customer = order.user.display_name if order.user else f"#{order.user_id}"
        return await self._notify_managers(
            texts.manager_new_order(order.id, customer, order.grand_total, currency)
        )

    async def notify_managers_new_receipt(self, order_id: int, receipt_id: int) -> int:
        order = await self._load_order(order_id)
        if order is None:
            return 0
        customer = order.user.display_name if order.user else f"#{order.user_id}"
        return await self._notify_managers(texts.manager_new_receipt(order.id, receipt_id, customer))

    async def notify_order_rejected(self, order_id: int, reason: Optional[str] = None) -> bool:
        return await self.notify_buyer(order_id, texts.order_rejected(order_id, reason))

    async def notify_invite(self, order_id: int, invite_link: str) -> bool:
        if not await self.notify_buyer(order_id, texts.order_approved_with_invite(order_id, invite_link)):
            return False
        return await self.notify_buyer(order_id, texts.receipt_instruction(order_id))

    async def notify_invite_expired(self, order_id: int) -> bool:
        return await self.notify_buyer(order_id, texts.invite_expired(order_id))

    async def notify_receipt_received(self, order_id: int) -> bool:
        return await self.notify_buyer(order_id, texts.receipt_received(order_id))

    async def notify_receipt_approved(self, order_id: int) -> bool:
        return await self.notify_buyer(order_id, texts.receipt_approved(order_id))

    async def notify_receipt_rejected(self, order_id: int, reason: Optional[str] = None) -> bool:
        return await self.notify_buyer(order_id, texts.receipt_rejected(order_id, reason))

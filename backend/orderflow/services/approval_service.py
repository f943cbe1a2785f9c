"""
订单审批编排：管理员审批 -> 结算频道邀请 / 直接发送付款说明 -> 等待付款凭证

审批本身（AWAITING_APPROVAL -> APPROVED）先行提交，之后的消息发送失败只会让订单
停留在可重试的状态，不会向调用方抛出网关异常。
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.clock import utcnow
from orderflow.core.config import settings
from orderflow.core.exceptions import MessagingError, OrderflowError, OrderNotFoundError
from orderflow.models.order import Order, OrderStatus
from orderflow.models.order_event import ActorType
from orderflow.schemas.events import (
    ApprovalFallbackDirectPayload,
    OrderApprovedPayload,
    OrderRejectedPayload,
    PaymentDetailsSentDirectPayload,
)
from orderflow.schemas.order import ApprovalResult
from orderflow.services import texts
from orderflow.services.event_service import record_order_event
from orderflow.services.invite_service import InviteService
from orderflow.services.messaging import MessagingGateway
from orderflow.services.notification_service import NotificationService
from orderflow.services.order_state import transition_order
from orderflow.services.scheduled_task_service import schedule_message_deletion

logger = logging.getLogger(__name__)

CHANNEL_NOT_CONFIGURED = "未配置结算频道，订单已改为直接付款，等待买家上传凭证"


class ApprovalService:
    """订单审批服务类"""

    def __init__(
        self,
        db: AsyncSession,
        client_gateway: MessagingGateway,
        notifications: Optional[NotificationService] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = client_gateway
        self.notifications = notifications
        self.invites = InviteService(db, client_gateway, notifications, now=now)
        self.settings = self.invites.settings
        self._now = now

    async def _current_status(self, order_id: int) -> Optional[OrderStatus]:
        result = await self.db.execute(select(Order.status).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def approve_order(self, order_id: int, manager_id: Optional[int] = None) -> ApprovalResult:
        """
        审批订单。订单不存在或不处于 AWAITING_APPROVAL 时抛出异常且不修改状态；
        之后的网关失败以 ApprovalResult 返回：success=False 且 status=APPROVED 表示等待补发。
        """
        try:
            await transition_order(
                self.db,
                order_id,
                [OrderStatus.AWAITING_APPROVAL],
                OrderStatus.APPROVED,
                OrderApprovedPayload(),
                actor_type=ActorType.MANAGER,
                actor_id=manager_id,
            )
            await self.db.commit()
        except OrderflowError:
            await self.db.rollback()
            raise
        logger.info("订单已批准 order_id=%s manager_id=%s", order_id, manager_id)

        method = await self.settings.get_payment_method()
        if method == "channel":
            channel_id = await self.settings.get_checkout_channel_id(settings.CHECKOUT_CHANNEL_ID)
            if channel_id:
                return await self._approve_via_channel(order_id, manager_id)
            logger.warning("未配置结算频道，订单改走直接付款 order_id=%s", order_id)
            record_order_event(
                self.db,
                order_id,
                ApprovalFallbackDirectPayload(reason="checkout channel not configured"),
                actor_type=ActorType.MANAGER,
                actor_id=manager_id,
            )
            await self.db.commit()
            result = await self._approve_direct(order_id, manager_id)
            if result.success:
                result.error = CHANNEL_NOT_CONFIGURED
            return result
        return await self._approve_direct(order_id, manager_id)

    async def _approve_via_channel(self, order_id: int, manager_id: Optional[int]) -> ApprovalResult:
        try:
            invite_link = await self.invites.create_invite_for_approved_order(
                order_id, actor_type=ActorType.MANAGER, actor_id=manager_id
            )
        except MessagingError as e:
            return ApprovalResult(
                success=False,
                status=OrderStatus.APPROVED,
                error=f"邀请链接创建失败，订单保持 APPROVED 等待自动补发；可检查频道配置或改用直接付款。({e.message})",
            )
        except OrderflowError as e:
            logger.warning("频道邀请流程中止 order_id=%s: %s", order_id, e)
            status = await self._current_status(order_id)
            return ApprovalResult(success=False, status=status or OrderStatus.APPROVED, error=e.message)
        return ApprovalResult(success=True, status=OrderStatus.INVITE_SENT, invite_link=invite_link)

    async def _approve_direct(self, order_id: int, manager_id: Optional[int]) -> ApprovalResult:
        """直接付款：私聊发送付款说明与上传凭证提示，APPROVED -> AWAITING_RECEIPT"""
        order = await self.invites.load_order(order_id)
        if order is None:
            raise OrderNotFoundError()
        buyer_chat = order.user.tg_user_id

        direct_message_id = None
        try:
            direct_message_id = await self.invites.send_payment_details(buyer_chat, order, retry_plain=True)
        except MessagingError as e:
            logger.error("私聊发送付款说明失败 order_id=%s: %s", order_id, e)

        try:
            await self.gateway.send_message(buyer_chat, texts.receipt_instruction(order_id))
        except MessagingError as e:
            logger.error("发送凭证提示失败 order_id=%s: %s", order_id, e)

        expiry_minutes = await self.settings.get_invite_expiry_minutes(settings.INVITE_EXPIRY_MINUTES)
        now = self._now()
        delete_at = now + timedelta(minutes=expiry_minutes) if direct_message_id else None

        try:
            await transition_order(
                self.db,
                order_id,
                [OrderStatus.APPROVED],
                OrderStatus.AWAITING_RECEIPT,
                PaymentDetailsSentDirectPayload(direct_message_id=direct_message_id, delete_at=delete_at),
                actor_type=ActorType.MANAGER,
                actor_id=manager_id,
                invite_sent_at=now,
            )
            if direct_message_id:
                schedule_message_deletion(self.db, buyer_chat, direct_message_id, delete_at, order_id=order_id)
            await self.db.commit()
        except OrderflowError as e:
            await self.db.rollback()
            logger.warning("直接付款状态迁移失败 order_id=%s: %s", order_id, e)
            status = await self._current_status(order_id)
            return ApprovalResult(success=False, status=status or OrderStatus.APPROVED, error=e.message)

        return ApprovalResult(
            success=True,
            status=OrderStatus.AWAITING_RECEIPT,
            direct_message_id=direct_message_id,
        )

    async def reject_order(self, order_id: int, manager_id: Optional[int] = None, reason: Optional[str] = None) -> None:
        """拒绝订单：AWAITING_APPROVAL -> CANCELLED，并通知买家"""
        try:
            await transition_order(
                self.db,
                order_id,
                [OrderStatus.AWAITING_APPROVAL],
                OrderStatus.CANCELLED,
                OrderRejectedPayload(reason=reason),
                actor_type=ActorType.MANAGER,
                actor_id=manager_id,
            )
            await self.db.commit()
        except OrderflowError:
            await self.db.rollback()
            raise
        logger.info("订单已拒绝 order_id=%s manager_id=%s", order_id, manager_id)
        if self.notifications is not None:
            await self.notifications.notify_order_rejected(order_id, reason)

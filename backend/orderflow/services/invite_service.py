"""
付款邀请服务：为 APPROVED 订单在结算频道发布付款消息并创建一次性、限时的邀请链接

审批流程与定时补发（send-invites）共用同一实现。
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orderflow.core.clock import utcnow
from orderflow.core.config import settings
from orderflow.core.exceptions import (
    MessagingError,
    OrderflowError,
    OrderNotApprovedError,
    OrderNotFoundError,
)
from orderflow.models.order import Order, OrderStatus
from orderflow.models.order_event import ActorType
from orderflow.schemas.events import InviteCreationFailedPayload, InviteSentPayload
from orderflow.services import texts
from orderflow.services.event_service import record_order_event
from orderflow.services.messaging import MessagingGateway
from orderflow.services.notification_service import NotificationService, order_currency
from orderflow.services.order_state import transition_order
from orderflow.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

PARSE_MODE = "Markdown"


class InviteService:
    """付款邀请服务类"""

    def __init__(
        self,
        db: AsyncSession,
        gateway: MessagingGateway,
        notifications: Optional[NotificationService] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.notifications = notifications
        self.settings = SettingsService(db)
        self._now = now

    async def load_order(self, order_id: int) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.user), selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def send_payment_details(self, chat_id, order: Order, retry_plain: bool = False) -> int:
        """
        发送付款说明（有配置图片时以图片 + 说明发送），返回消息 id。
        retry_plain=True 时富文本失败会以纯文本再试一次。
        """
        currency = await order_currency(self.db, order)
        caption = texts.payment_message(order.id, order.grand_total, currency)
        image = await self.settings.get_checkout_image_file_id(settings.CHECKOUT_IMAGE_FILE_ID)
        try:
            return await self._send(chat_id, image, caption, PARSE_MODE)
        except MessagingError as e:
            if not retry_plain:
                raise
            logger.warning("付款说明发送失败，改为纯文本重试 order_id=%s: %s", order.id, e)
        return await self._send(chat_id, image, texts.strip_markdown(caption), None)

    async def _send(self, chat_id, image: Optional[str], text: str, parse_mode: Optional[str]) -> int:
        if image:
            return await self.gateway.send_photo(chat_id, image, caption=text, parse_mode=parse_mode)
        return await self.gateway.send_message(chat_id, text, parse_mode=parse_mode)

    async def create_invite_for_approved_order(
        self,
        order_id: int,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: Optional[int] = None,
    ) -> str:
        """
        为 APPROVED 订单创建邀请并迁移到 INVITE_SENT，返回邀请链接。
        已有链接直接返回；邀请创建失败时记录 invite_creation_failed 并抛出 MessagingError，
        订单保持 APPROVED 以便稍后重试。
        """
        order = await self.load_order(order_id)
        if order is None:
            raise OrderNotFoundError()
        if order.invite_link:
            return order.invite_link
        if order.status != OrderStatus.APPROVED:
            raise OrderNotApprovedError(f"订单 #{order_id} 当前状态为 {order.status.value}")

        channel_id = await self.settings.get_checkout_channel_id(settings.CHECKOUT_CHANNEL_ID)
        if not channel_id:
            raise MessagingError("未配置结算频道", method="createChatInviteLink")

        # 重试时复用之前已发布的付款消息
        channel_message_id = order.channel_message_id
        if channel_message_id is None:
            try:
                channel_message_id = await self.send_payment_details(channel_id, order)
            except MessagingError as e:
                logger.error("发布频道付款消息失败 order_id=%s: %s", order_id, e)

        expiry_minutes = await self.settings.get_invite_expiry_minutes(settings.INVITE_EXPIRY_MINUTES)
        now = self._now()
        expires_at = now + timedelta(minutes=expiry_minutes)

        try:
            invite_link = await self.gateway.create_invite_link(
                channel_id,
                member_limit=1,
                name=f"Order #{order_id}",
                expires_at=expires_at,
            )
        except MessagingError as e:
            logger.error("创建邀请链接失败 order_id=%s: %s", order_id, e)
            order.channel_message_id = channel_message_id
            record_order_event(
                self.db,
                order_id,
                InviteCreationFailedPayload(channel_message_id=channel_message_id, error=str(e)),
                actor_type=actor_type,
                actor_id=actor_id,
            )
            await self.db.commit()
            raise

        try:
            await transition_order(
                self.db,
                order_id,
                [OrderStatus.APPROVED],
                OrderStatus.INVITE_SENT,
                InviteSentPayload(
                    invite_link=invite_link,
                    channel_message_id=channel_message_id,
                    expires_at=expires_at,
                ),
                actor_type=actor_type,
                actor_id=actor_id,
                invite_link=invite_link,
                invite_sent_at=now,
                invite_expires_at=expires_at,
                channel_message_id=channel_message_id,
            )
            await self.db.commit()
        except OrderflowError:
            await self.db.rollback()
            # 订单已被其他写者改动，撤销刚创建的链接
            try:
                await self.gateway.revoke_invite_link(channel_id, invite_link)
            except MessagingError as e:
                logger.warning("撤销多余邀请链接失败 order_id=%s: %s", order_id, e)
            raise

        logger.info("邀请已创建 order_id=%s expires_at=%s", order_id, expires_at.isoformat())
        if self.notifications is not None:
            await self.notifications.notify_invite(order_id, invite_link)
        return invite_link

    async def process_send_invites_batch(self, limit: int = 50) -> int:
        """补发邀请：APPROVED 且无邀请链接的订单逐个重试，返回成功数"""
        # 私信付款时 APPROVED 只是发送付款说明前的瞬时状态，不能再补发频道邀请
        if await self.settings.get_payment_method() == "direct":
            return 0
        result = await self.db.execute(
            select(Order.id)
            .where(Order.status == OrderStatus.APPROVED, Order.invite_link.is_(None))
            .order_by(Order.id)
            .limit(limit)
        )
        order_ids = list(result.scalars().all())
        sent = 0
        for order_id in order_ids:
            try:
                await self.create_invite_for_approved_order(order_id)
                sent += 1
            except OrderflowError as e:
                logger.warning("补发邀请失败 order_id=%s: %s", order_id, e)
        if order_ids:
            logger.info("补发邀请完成 candidates=%s sent=%s", len(order_ids), sent)
        return sent

"""
付款凭证服务：买家提交凭证，管理员审核通过 / 驳回
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orderflow.core.clock import utcnow
from orderflow.core.config import settings
from orderflow.core.exceptions import (
    InvalidOrderTransitionError,
    OrderflowError,
    OrderNotFoundError,
    ReceiptNotFoundError,
    ReceiptNotPendingError,
)
from orderflow.models.order import Order, OrderStatus
from orderflow.models.order_event import ActorType
from orderflow.models.receipt import Receipt, ReceiptReviewStatus
from orderflow.schemas.events import ReceiptApprovedPayload, ReceiptRejectedPayload, ReceiptSubmittedPayload
from orderflow.services.channel_cleanup_service import ChannelCleanupTarget, cleanup_channel_for_order
from orderflow.services.event_service import record_order_event
from orderflow.services.messaging import MessagingGateway
from orderflow.services.notification_service import NotificationService
from orderflow.services.order_state import transition_order
from orderflow.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

RECEIPT_OPEN_STATUSES = (OrderStatus.INVITE_SENT, OrderStatus.AWAITING_RECEIPT)
SUPERSEDED_NOTE = "superseded by a newer receipt"


class ReceiptService:
    """付款凭证服务类"""

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
        self._now = now

    async def find_order_for_receipt(self, user_id: int) -> Optional[Order]:
        """买家最近一笔等待付款凭证的订单"""
        result = await self.db.execute(
            select(Order)
            .where(Order.user_id == user_id, Order.status.in_(RECEIPT_OPEN_STATUSES))
            .order_by(Order.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_receipt(self, receipt_id: int) -> Receipt:
        result = await self.db.execute(
            select(Receipt).where(Receipt.id == receipt_id).execution_options(populate_existing=True)
        )
        receipt = result.scalar_one_or_none()
        if receipt is None:
            raise ReceiptNotFoundError()
        return receipt

    async def submit_receipt(
        self,
        order_id: int,
        user_id: int,
        file_id: str,
        caption: Optional[str] = None,
    ) -> Receipt:
        """
        提交凭证：订单须属于该买家且处于 INVITE_SENT / AWAITING_RECEIPT。
        之前待审核的凭证作废；INVITE_SENT 迁移到 AWAITING_RECEIPT。
        """
        order = await self.db.get(Order, order_id, populate_existing=True)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError()
        if order.status not in RECEIPT_OPEN_STATUSES:
            raise InvalidOrderTransitionError(
                f"订单 #{order_id} 当前状态为 {order.status.value}，不能提交付款凭证",
                current_status=order.status,
            )

        try:
            result = await self.db.execute(
                select(Receipt.id).where(
                    Receipt.order_id == order_id,
                    Receipt.review_status == ReceiptReviewStatus.PENDING,
                )
            )
            superseded = list(result.scalars().all())
            if superseded:
                await self.db.execute(
                    update(Receipt)
                    .where(Receipt.id.in_(superseded))
                    .values(review_status=ReceiptReviewStatus.REJECTED, review_notes=SUPERSEDED_NOTE)
                    .execution_options(synchronize_session=False)
                )

            receipt = Receipt(
                order_id=order_id,
                user_id=user_id,
                file_id=file_id,
                caption=caption,
                review_status=ReceiptReviewStatus.PENDING,
                submitted_at=self._now(),
            )
            self.db.add(receipt)
            await self.db.flush()

            payload = ReceiptSubmittedPayload(receipt_id=receipt.id, superseded_receipt_ids=superseded)
            if order.status == OrderStatus.INVITE_SENT:
                await transition_order(
                    self.db,
                    order_id,
                    [OrderStatus.INVITE_SENT],
                    OrderStatus.AWAITING_RECEIPT,
                    payload,
                    actor_type=ActorType.BUYER,
                    actor_id=user_id,
                )
            else:
                # 与过期清理竞争：同一事务内再确认一次订单仍可收凭证
                status = (await self.db.execute(select(Order.status).where(Order.id == order_id))).scalar_one()
                if status not in RECEIPT_OPEN_STATUSES:
                    raise InvalidOrderTransitionError(
                        f"订单 #{order_id} 当前状态为 {status.value}，不能提交付款凭证",
                        current_status=status,
                    )
                record_order_event(self.db, order_id, payload, actor_type=ActorType.BUYER, actor_id=user_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("付款凭证已提交 order_id=%s receipt_id=%s superseded=%s", order_id, receipt.id, superseded)
        if self.notifications is not None:
            await self.notifications.notify_receipt_received(order_id)
            await self.notifications.notify_managers_new_receipt(order_id, receipt.id)
        return receipt

    async def _mark_reviewed(
        self,
        receipt_id: int,
        status: ReceiptReviewStatus,
        manager_id: Optional[int],
        notes: Optional[str] = None,
    ) -> None:
        res = await self.db.execute(
            update(Receipt)
            .where(Receipt.id == receipt_id, Receipt.review_status == ReceiptReviewStatus.PENDING)
            .values(review_status=status, reviewed_by_id=manager_id, review_notes=notes)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ReceiptNotPendingError()

    async def approve_receipt(self, receipt_id: int, manager_id: Optional[int] = None) -> Receipt:
        """凭证通过：凭证 ACCEPTED + 订单 AWAITING_RECEIPT -> PAID（同一事务），随后清理频道并通知买家"""
        receipt = await self.get_receipt(receipt_id)
        if receipt.review_status != ReceiptReviewStatus.PENDING:
            raise ReceiptNotPendingError()
        order_id = receipt.order_id

        try:
            await self._mark_reviewed(receipt_id, ReceiptReviewStatus.ACCEPTED, manager_id)
            await transition_order(
                self.db,
                order_id,
                [OrderStatus.AWAITING_RECEIPT],
                OrderStatus.PAID,
                ReceiptApprovedPayload(receipt_id=receipt_id),
                actor_type=ActorType.MANAGER,
                actor_id=manager_id,
            )
            await self.db.commit()
        except OrderflowError:
            await self.db.rollback()
            raise
        logger.info("付款凭证已通过 order_id=%s receipt_id=%s manager_id=%s", order_id, receipt_id, manager_id)

        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.user))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one()
        channel_id = await SettingsService(self.db).get_checkout_channel_id(settings.CHECKOUT_CHANNEL_ID)
        await cleanup_channel_for_order(self.db, self.gateway, channel_id, ChannelCleanupTarget.from_order(order))

        if self.notifications is not None:
            await self.notifications.notify_receipt_approved(order_id)
        return await self.get_receipt(receipt_id)

    async def reject_receipt(
        self,
        receipt_id: int,
        manager_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Receipt:
        """凭证驳回：订单保持 AWAITING_RECEIPT，请买家重新上传"""
        receipt = await self.get_receipt(receipt_id)
        if receipt.review_status != ReceiptReviewStatus.PENDING:
            raise ReceiptNotPendingError()
        order_id = receipt.order_id

        try:
            await self._mark_reviewed(receipt_id, ReceiptReviewStatus.REJECTED, manager_id, reason)
            record_order_event(
                self.db,
                order_id,
                ReceiptRejectedPayload(receipt_id=receipt_id, reason=reason),
                actor_type=ActorType.MANAGER,
                actor_id=manager_id,
            )
            await self.db.commit()
        except OrderflowError:
            await self.db.rollback()
            raise
        logger.info("付款凭证已驳回 order_id=%s receipt_id=%s", order_id, receipt_id)

        if self.notifications is not None:
            await self.notifications.notify_receipt_rejected(order_id, reason)
        return await self.get_receipt(receipt_id)

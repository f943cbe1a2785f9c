"""
付款邀请过期清理：付款时限已过、且没有待审核凭证的订单取消并清理频道

取消是一条带条件的 UPDATE，在同一语句中再次确认状态与“无待审核凭证”，
选中之后才到达的凭证会让这次取消落空，订单留给管理员处理。
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orderflow.core.clock import utcnow
from orderflow.core.exceptions import InvalidOrderTransitionError
from orderflow.models.order import Order, OrderStatus
from orderflow.models.receipt import Receipt, ReceiptReviewStatus
from orderflow.schemas.events import InviteExpiredPayload
from orderflow.services.channel_cleanup_service import ChannelCleanupTarget, cleanup_channel_for_order
from orderflow.services.messaging import MessagingGateway
from orderflow.services.notification_service import NotificationService
from orderflow.services.order_state import transition_order

logger = logging.getLogger(__name__)

EXPIRABLE_STATUSES = (OrderStatus.INVITE_SENT, OrderStatus.AWAITING_RECEIPT)


def _has_pending_receipt():
    return exists().where(
        Receipt.order_id == Order.id,
        Receipt.review_status == ReceiptReviewStatus.PENDING,
    )


async def process_expired_invites(
    db: AsyncSession,
    gateway: MessagingGateway,
    channel_id: Optional[str] = None,
    now: Optional[datetime] = None,
    notifications: Optional[NotificationService] = None,
) -> int:
    """返回本轮取消的订单数"""
    now = now or utcnow()
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.user))
        .where(
            Order.invite_expires_at < now,
            Order.status.in_(EXPIRABLE_STATUSES),
            Order.invite_link.is_not(None),
            ~_has_pending_receipt(),
        )
        .order_by(Order.id)
        .execution_options(populate_existing=True)
    )
    # 先取出快照：回滚会使会话中的对象过期
    candidates = [(ChannelCleanupTarget.from_order(o), o.invite_expires_at) for o in result.scalars().all()]

    cancelled = 0
    for target, expired_at in candidates:
        try:
            await transition_order(
                db,
                target.order_id,
                EXPIRABLE_STATUSES,
                OrderStatus.CANCELLED,
                InviteExpiredPayload(expired_at=expired_at),
                where=[~_has_pending_receipt()],
            )
            await db.commit()
        except InvalidOrderTransitionError as e:
            await db.rollback()
            logger.info("跳过过期订单（状态已变化或有新凭证） order_id=%s: %s", target.order_id, e)
            continue

        cancelled += 1
        logger.info("付款邀请已过期，订单已取消 order_id=%s expired_at=%s", target.order_id, expired_at)
        await cleanup_channel_for_order(db, gateway, channel_id, target)
        if notifications is not None:
            await notifications.notify_invite_expired(target.order_id)

    if candidates:
        logger.info("过期清理完成 candidates=%s cancelled=%s", len(candidates), cancelled)
    return cancelled

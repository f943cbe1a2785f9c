"""
结算频道清理：删除付款消息、撤销邀请链接、把买家移出频道，并清空订单上的频道字段

付款成功（凭证通过）与付款超时（过期清理）两条路径都会调用，必须可重复执行：
每一步失败都只记日志，最后清空 channel_message_id / invite_link，
再次调用时没有可清理的资源。
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.exceptions import MessagingError
from orderflow.models.order import Order
from orderflow.services.messaging import MessagingGateway

logger = logging.getLogger(__name__)


@dataclass
class ChannelCleanupTarget:
    order_id: int
    channel_message_id: Optional[int]
    invite_link: Optional[str]
    user_tg_id: Optional[int]

    @classmethod
    def from_order(cls, order: Order) -> "ChannelCleanupTarget":
        return cls(
            order_id=order.id,
            channel_message_id=order.channel_message_id,
            invite_link=order.invite_link,
            user_tg_id=order.user.tg_user_id if order.user else None,
        )


async def cleanup_channel_for_order(
    db: AsyncSession,
    gateway: MessagingGateway,
    channel_id: Optional[str],
    target: ChannelCleanupTarget,
) -> None:
    """尽力清理频道资源；未配置频道时只清空订单字段"""
    if channel_id:
        if target.channel_message_id:
            try:
                await gateway.delete_message(channel_id, target.channel_message_id)
            except MessagingError as e:
                logger.warning("删除频道付款消息失败 order_id=%s: %s", target.order_id, e)

        if target.invite_link:
            try:
                await gateway.revoke_invite_link(channel_id, target.invite_link)
            except MessagingError as e:
                logger.warning("撤销邀请链接失败 order_id=%s: %s", target.order_id, e)

        # 封禁后立即解封：移出频道但允许以后的订单再次邀请
        if target.user_tg_id:
            try:
                await gateway.ban_member(channel_id, target.user_tg_id)
                await gateway.unban_member(channel_id, target.user_tg_id, only_if_banned=True)
            except MessagingError as e:
                logger.info("移出频道成员失败（可能未加入） order_id=%s: %s", target.order_id, e)

    await db.execute(
        update(Order)
        .where(Order.id == target.order_id)
        .values(channel_message_id=None, invite_link=None)
    )
    await db.commit()
    logger.info("频道清理完成 order_id=%s", target.order_id)

"""
频道清理：尽力而为、可重复执行
"""
from datetime import timedelta

from conftest import CHANNEL_ID, NOW
from orderflow.models import Order, OrderStatus
from orderflow.services.channel_cleanup_service import ChannelCleanupTarget, cleanup_channel_for_order


async def _target(seed, db):
    user = await seed.user()
    order = await seed.invited_order(user, expires_at=NOW - timedelta(minutes=1), status=OrderStatus.PAID)
    return user, order, ChannelCleanupTarget.from_order(await _with_user(db, order.id))


async def _with_user(db, order_id):
    from sqlalchemy import select
    from sqlalchemy.orm import selectinload
    result = await db.execute(select(Order).options(selectinload(Order.user)).where(Order.id == order_id).execution_options(populate_existing=True))
    return result.scalar_one()


class TestCleanupChannelForOrder:

    async def test_full_cleanup(self, db, seed, gateway):
        user, order, target = await _target(seed, db)

        await cleanup_channel_for_order(db, gateway, CHANNEL_ID, target)

        assert [name for name, _ in gateway.calls] == ["delete_message", "revoke_invite_link", "ban_member", "unban_member"]
        assert gateway.called("delete_message")[0]["message_id"] == 77
        assert gateway.called("revoke_invite_link")[0]["invite_link"] == "https://t.me/+expired"
        assert gateway.called("unban_member")[0] == {"chat_id": CHANNEL_ID, "user_id": user.tg_user_id, "only_if_banned": True}
        reloaded = await db.get(Order, order.id, populate_existing=True)
        assert reloaded.channel_message_id is None
        assert reloaded.invite_link is None

    async def test_second_run_is_noop(self, db, seed, gateway):
        user, order, target = await _target(seed, db)
        await cleanup_channel_for_order(db, gateway, CHANNEL_ID, target)
        gateway.calls.clear()

        again = ChannelCleanupTarget.from_order(await _with_user(db, order.id))
        await cleanup_channel_for_order(db, gateway, CHANNEL_ID, again)

        # 只剩移出成员（用户可能已不在频道，失败也会被吞掉）
        assert [name for name, _ in gateway.calls] == ["ban_member", "unban_member"]

    async def test_gateway_failures_are_swallowed(self, db, seed, gateway):
        _, order, target = await _target(seed, db)
        for method in ("delete_message", "revoke_invite_link", "ban_member"):
            gateway.fail_on(method)

        await cleanup_channel_for_order(db, gateway, CHANNEL_ID, target)

        reloaded = await db.get(Order, order.id, populate_existing=True)
        assert reloaded.invite_link is None
        assert gateway.called("unban_member") == []

    async def test_without_channel_only_clears_fields(self, db, seed, gateway):
        _, order, target = await _target(seed, db)
        await cleanup_channel_for_order(db, gateway, None, target)
        assert gateway.calls == []
        assert (await db.get(Order, order.id, populate_existing=True)).channel_message_id is None

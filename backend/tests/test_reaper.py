"""
付款邀请过期清理
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import CHANNEL_ID, NOW
from orderflow.models import Order, OrderStatus, Receipt, ReceiptReviewStatus
from orderflow.services.event_service import count_order_events
from orderflow.services.notification_service import NotificationService
from orderflow.services.reaper_service import process_expired_invites


@pytest.fixture
def reap(db, gateway, manager_gateway):
    notifications = NotificationService(db, gateway, manager_gateway)

    async def _run():
        return await process_expired_invites(db, gateway, CHANNEL_ID, now=NOW, notifications=notifications)
    return _run


async def _status(db, order_id):
    return (await db.get(Order, order_id, populate_existing=True)).status


class TestProcessExpiredInvites:

    async def test_cancels_expired_order_once(self, reap, seed, db, gateway):
        user = await seed.user()
        order = await seed.invited_order(user, expires_at=NOW - timedelta(minutes=5))

        assert await reap() == 1
        assert await _status(db, order.id) == OrderStatus.CANCELLED
        assert len(gateway.called("revoke_invite_link")) == 1
        assert len(gateway.called("delete_message")) == 1
        expired_notice = [m for m in gateway.called("send_message") if m["chat_id"] == user.tg_user_id]
        assert len(expired_notice) == 1

        assert await reap() == 0
        assert await count_order_events(db, order.id, "invite_expired") == 1
        assert len(gateway.called("revoke_invite_link")) == 1

    async def test_awaiting_receipt_without_pending_receipt_is_cancelled(self, reap, seed, db):
        user = await seed.user()
        order = await seed.invited_order(user, expires_at=NOW - timedelta(minutes=5), status=OrderStatus.AWAITING_RECEIPT)
        await seed.receipt(order, status=ReceiptReviewStatus.REJECTED)

        assert await reap() == 1
        assert await _status(db, order.id) == OrderStatus.CANCELLED

    async def test_pending_receipt_blocks_cancellation(self, reap, seed, db, gateway):
        user = await seed.user()
        order = await seed.invited_order(user, expires_at=NOW - timedelta(minutes=5), status=OrderStatus.AWAITING_RECEIPT)
        await seed.receipt(order)

        assert await reap() == 0
        assert await _status(db, order.id) == OrderStatus.AWAITING_RECEIPT
        assert gateway.calls == []

    async def test_not_yet_expired_or_other_status_untouched(self, reap, seed, db):
        user = await seed.user()
        fresh = await seed.invited_order(user, expires_at=NOW + timedelta(minutes=5))
        paid = await seed.invited_order(user, expires_at=NOW - timedelta(minutes=5), status=OrderStatus.PAID)

        assert await reap() == 0
        assert await _status(db, fresh.id) == OrderStatus.INVITE_SENT
        assert await _status(db, paid.id) == OrderStatus.PAID

    async def test_receipt_arriving_after_selection_wins(self, seed, db, gateway, monkeypatch):
        """凭证在选中之后、取消之前到达：取消落空"""
        from orderflow.services import reaper_service

        user = await seed.user()
        order = await seed.invited_order(user, expires_at=NOW - timedelta(minutes=5))
        order_id, user_id = order.id, user.id
        real_transition = reaper_service.transition_order

        async def late_receipt(session, *args, **kwargs):
            # 另一个写者先提交了凭证
            session.add(Receipt(order_id=order_id, user_id=user_id, file_id="late"))
            await session.commit()
            await real_transition(session, *args, **kwargs)

        monkeypatch.setattr(reaper_service, "transition_order", late_receipt)

        assert await process_expired_invites(db, gateway, CHANNEL_ID, now=NOW) == 0
        assert await _status(db, order_id) == OrderStatus.INVITE_SENT
        assert gateway.calls == []
        pending = (await db.execute(
            select(Receipt).where(Receipt.order_id == order_id, Receipt.review_status == ReceiptReviewStatus.PENDING)
        )).scalars().all()
        assert len(pending) == 1

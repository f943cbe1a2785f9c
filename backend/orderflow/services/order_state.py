"""
订单状态机：合法迁移表 + 带条件的 UPDATE

审批、凭证审核与过期清理是并发写同一订单行的独立写者，没有全局锁；
每次迁移都是 `UPDATE ... WHERE status IN (...)`，依靠行级原子性串行化，
状态机本身就是正确性保障。
"""
from typing import Dict, FrozenSet, Iterable, Optional, Sequence

from sqlalchemy import update, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.exceptions import InvalidOrderTransitionError, OrderNotFoundError
from orderflow.models.order import Order, OrderStatus
from orderflow.models.order_event import ActorType
from orderflow.schemas.events import OrderEventPayload
from orderflow.services.event_service import record_order_event

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.AWAITING_APPROVAL: frozenset({OrderStatus.APPROVED, OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.INVITE_SENT, OrderStatus.AWAITING_RECEIPT}),
    OrderStatus.INVITE_SENT: frozenset({OrderStatus.AWAITING_RECEIPT, OrderStatus.CANCELLED}),
    OrderStatus.AWAITING_RECEIPT: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.COMPLETED})

_STATUS_LABELS = {
    OrderStatus.AWAITING_APPROVAL: "⏳ 待管理员审批",
    OrderStatus.APPROVED: "✅ 已批准",
    OrderStatus.INVITE_SENT: "📨 已发送付款邀请",
    OrderStatus.AWAITING_RECEIPT: "🧾 待上传付款凭证",
    OrderStatus.PAID: "💰 已付款",
    OrderStatus.COMPLETED: "✅ 已完成",
    OrderStatus.CANCELLED: "❌ 已取消",
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def order_status_label(status: OrderStatus) -> str:
    """面向管理员的状态文案"""
    return _STATUS_LABELS.get(status, str(status))


async def transition_order(
    db: AsyncSession,
    order_id: int,
    from_statuses: Iterable[OrderStatus],
    to_status: OrderStatus,
    payload: Optional[OrderEventPayload] = None,
    actor_type: ActorType = ActorType.SYSTEM,
    actor_id: Optional[int] = None,
    where: Sequence = (),
    **values,
) -> None:
    """
    把订单从 from_statuses 之一迁移到 to_status，同时写入其他字段与一条事件。
    where 为附加的 WHERE 条件，与状态条件在同一条 UPDATE 中判断。
    迁移不合法、订单已被其他写者改动或附加条件不满足时抛出 InvalidOrderTransitionError。
    不提交事务。
    """
    sources = list(from_statuses)
    illegal = [s for s in sources if not can_transition(s, to_status)]
    if illegal:
        raise InvalidOrderTransitionError(
            f"不允许的状态迁移: {', '.join(s.value for s in illegal)} -> {to_status.value}"
        )

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status.in_(sources), *where)
        .values(status=to_status, **values)
    )
    if result.rowcount != 1:
        current = (await db.execute(select(Order.status).where(Order.id == order_id))).scalar_one_or_none()
        if current is None:
            raise OrderNotFoundError()
        raise InvalidOrderTransitionError(
            f"订单 #{order_id} 当前状态为 {current.value}，无法迁移到 {to_status.value}",
            current_status=current,
        )

    if payload is not None:
        record_order_event(db, order_id, payload, actor_type=actor_type, actor_id=actor_id)

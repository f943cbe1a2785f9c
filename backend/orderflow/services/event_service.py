"""
订单审计事件：在调用方的事务中追加一条 order_events 记录（不单独提交）
"""
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.models.order_event import OrderEvent, ActorType
from orderflow.schemas.events import OrderEventPayload


def record_order_event(
    db: AsyncSession,
    order_id: int,
    payload: OrderEventPayload,
    actor_type: ActorType = ActorType.SYSTEM,
    actor_id: Optional[int] = None,
) -> OrderEvent:
    """写入一条事件。与状态变更处于同一事务，由调用方 commit。"""
    entry = OrderEvent(
        order_id=order_id,
        actor_type=actor_type,
        actor_id=actor_id,
        event_type=payload.event_type,
        payload=payload.model_dump(mode="json"),
    )
    db.add(entry)
    return entry


async def list_order_events(db: AsyncSession, order_id: int, event_type: Optional[str] = None) -> List[OrderEvent]:
    """按时间顺序列出订单事件"""
    stmt = select(OrderEvent).where(OrderEvent.order_id == order_id)
    if event_type:
        stmt = stmt.where(OrderEvent.event_type == event_type)
    result = await db.execute(stmt.order_by(OrderEvent.id))
    return list(result.scalars().all())


async def count_order_events(db: AsyncSession, order_id: int, event_type: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(OrderEvent).where(
            OrderEvent.order_id == order_id,
            OrderEvent.event_type == event_type,
        )
    )
    return result.scalar() or 0

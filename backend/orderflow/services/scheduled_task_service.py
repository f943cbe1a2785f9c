"""
延时任务服务：落库的“稍后执行”动作，由周期任务轮询执行

目前只有 delete_message（直接付款方式下到期删除付款说明）。
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.clock import utcnow
from orderflow.core.config import settings
from orderflow.core.exceptions import OrderflowError
from orderflow.models.scheduled_task import ScheduledTask, ScheduledTaskStatus
from orderflow.services.messaging import MessagingGateway

logger = logging.getLogger(__name__)

DELETE_MESSAGE = "delete_message"

TaskHandler = Callable[[MessagingGateway, Dict[str, Any]], Awaitable[None]]


async def _handle_delete_message(gateway: MessagingGateway, payload: Dict[str, Any]) -> None:
    await gateway.delete_message(payload["chat_id"], payload["message_id"])


HANDLERS: Dict[str, TaskHandler] = {
    DELETE_MESSAGE: _handle_delete_message,
}


def schedule_message_deletion(
    db: AsyncSession,
    chat_id,
    message_id: int,
    run_at: datetime,
    order_id: Optional[int] = None,
) -> ScheduledTask:
    """登记一条删除消息任务（不提交）"""
    task = ScheduledTask(
        kind=DELETE_MESSAGE,
        payload={"chat_id": chat_id, "message_id": message_id},
        order_id=order_id,
        run_at=run_at,
        status=ScheduledTaskStatus.PENDING,
        attempts=0,
    )
    db.add(task)
    return task


async def run_due_tasks(
    db: AsyncSession,
    gateway: MessagingGateway,
    now: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
    limit: int = 100,
) -> int:
    """执行到期的 PENDING 任务，返回成功数；失败累计次数，达到上限标记 FAILED"""
    now = now or utcnow()
    max_attempts = max_attempts or settings.SCHEDULED_TASK_MAX_ATTEMPTS
    result = await db.execute(
        select(ScheduledTask)
        .where(ScheduledTask.status == ScheduledTaskStatus.PENDING, ScheduledTask.run_at <= now)
        .order_by(ScheduledTask.run_at, ScheduledTask.id)
        .limit(limit)
    )
    tasks = list(result.scalars().all())
    done = 0
    for task in tasks:
        handler = HANDLERS.get(task.kind)
        task.attempts = (task.attempts or 0) + 1
        if handler is None:
            task.status = ScheduledTaskStatus.FAILED
            task.last_error = f"unknown task kind: {task.kind}"
            logger.error("未知的延时任务类型 task_id=%s kind=%s", task.id, task.kind)
        else:
            try:
                await handler(gateway, dict(task.payload or {}))
                task.status = ScheduledTaskStatus.DONE
                task.completed_at = now
                task.last_error = None
                done += 1
            except OrderflowError as e:
                task.last_error = str(e)
                if task.attempts >= max_attempts:
                    task.status = ScheduledTaskStatus.FAILED
                    logger.error("延时任务失败，已达上限 task_id=%s kind=%s: %s", task.id, task.kind, e)
                else:
                    logger.warning("延时任务失败，稍后重试 task_id=%s attempt=%s: %s", task.id, task.attempts, e)
        await db.commit()
    if tasks:
        logger.info("延时任务执行完成 due=%s done=%s", len(tasks), done)
    return done

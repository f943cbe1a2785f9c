"""
Celery 任务模块：付款邀请过期清理、补发邀请、闲置购物车过期、延时任务
"""
from orderflow.tasks.order_tasks import (
    expire_invites_task,
    send_invites_task,
    cleanup_idle_carts_task,
    run_due_scheduled_tasks_task,
)

__all__ = [
    "expire_invites_task",
    "send_invites_task",
    "cleanup_idle_carts_task",
    "run_due_scheduled_tasks_task",
]

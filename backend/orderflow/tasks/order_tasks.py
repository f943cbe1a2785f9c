"""
订单周期任务：由 celery beat 定时触发
注意：必须使用任务内创建的 engine/session（create_async_engine_and_session_for_celery），
不能使用全局 AsyncSessionLocal，否则会报 "Future attached to a different loop"。
消息网关同理，每次任务新建、用完关闭。
"""
import asyncio
import logging
from typing import Any, Dict

from orderflow.core.config import settings
from orderflow.core.database import create_async_engine_and_session_for_celery
from orderflow.services.cart_service import CartService
from orderflow.services.invite_service import InviteService
from orderflow.services.messaging import get_client_gateway, get_manager_gateway
from orderflow.services.notification_service import NotificationService
from orderflow.services.reaper_service import process_expired_invites
from orderflow.services.scheduled_task_service import run_due_tasks
from orderflow.services.settings_service import SettingsService

from orderflow.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """在同步上下文中运行异步协程（Celery 任务内使用）"""
    try:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _with_celery_db(async_fn):
    """在任务内创建当前 loop 的 engine/session 与消息网关，执行 async_fn(db, client, manager)。"""
    async def _run():
        await asyncio.sleep(0)  # 确保已在当前 loop 的 async 上下文中
        engine, session_factory = create_async_engine_and_session_for_celery()
        client_gateway = get_client_gateway()
        manager_gateway = get_manager_gateway()
        try:
            async with session_factory() as db:
                return await async_fn(db, client_gateway, manager_gateway)
        finally:
            await client_gateway.aclose()
            await manager_gateway.aclose()
            await engine.dispose()
    return _run


@celery_app.task(bind=True, name="orders.expire_invites")
def expire_invites_task(self) -> Dict[str, Any]:
    """取消付款时限已过且无待审核凭证的订单"""
    async def _run(db, client_gateway, manager_gateway):
        channel_id = await SettingsService(db).get_checkout_channel_id(settings.CHECKOUT_CHANNEL_ID)
        notifications = NotificationService(db, client_gateway, manager_gateway)
        cancelled = await process_expired_invites(
            db, client_gateway, channel_id=channel_id, notifications=notifications
        )
        return {"cancelled": cancelled}

    try:
        return _run_async(_with_celery_db(_run)())
    except Exception as e:
        logger.exception("expire_invites_task failed: %s", e)
        raise


@celery_app.task(bind=True, name="orders.send_invites")
def send_invites_task(self) -> Dict[str, Any]:
    """为 APPROVED 且无邀请链接的订单补发邀请（未配置结算频道时跳过）"""
    async def _run(db, client_gateway, manager_gateway):
        channel_id = await SettingsService(db).get_checkout_channel_id(settings.CHECKOUT_CHANNEL_ID)
        if not channel_id:
            return {"sent": 0, "skipped": "checkout channel not configured"}
        notifications = NotificationService(db, client_gateway, manager_gateway)
        sent = await InviteService(db, client_gateway, notifications).process_send_invites_batch()
        return {"sent": sent}

    try:
        return _run_async(_with_celery_db(_run)())
    except Exception as e:
        logger.exception("send_invites_task failed: %s", e)
        raise


@celery_app.task(bind=True, name="carts.cleanup_idle")
def cleanup_idle_carts_task(self) -> Dict[str, Any]:
    async def _run(db, client_gateway, manager_gateway):
        expired = await CartService(db).expire_idle_carts(settings.CART_IDLE_HOURS)
        return {"expired": expired}

    try:
        return _run_async(_with_celery_db(_run)())
    except Exception as e:
        logger.exception("cleanup_idle_carts_task failed: %s", e)
        raise


@celery_app.task(bind=True, name="scheduled.run_due")
def run_due_scheduled_tasks_task(self) -> Dict[str, Any]:
    """执行到期的延时任务（如直接付款说明的自动删除）"""
    async def _run(db, client_gateway, manager_gateway):
        done = await run_due_tasks(db, client_gateway)
        return {"done": done}

    try:
        return _run_async(_with_celery_db(_run)())
    except Exception as e:
        logger.exception("run_due_scheduled_tasks_task failed: %s", e)
        raise

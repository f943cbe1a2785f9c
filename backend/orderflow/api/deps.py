"""
通用依赖：消息网关、通知服务、管理员身份
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.database import get_db
from orderflow.models.user import Manager
from orderflow.services.messaging import MessagingGateway, NullMessagingGateway
from orderflow.services.notification_service import NotificationService


def _gateway(request: Request, name: str) -> MessagingGateway:
    gateway = getattr(request.app.state, name, None)
    return gateway if gateway is not None else NullMessagingGateway()


async def get_client_gateway(request: Request) -> MessagingGateway:
    """买家/结算频道机器人（lifespan 中创建，存于 app.state）"""
    return _gateway(request, "client_gateway")


async def get_manager_gateway(request: Request) -> MessagingGateway:
    return _gateway(request, "manager_gateway")


async def get_notifications(
    db: AsyncSession = Depends(get_db),
    client_gateway: MessagingGateway = Depends(get_client_gateway),
    manager_gateway: MessagingGateway = Depends(get_manager_gateway),
) -> NotificationService:
    return NotificationService(db, client_gateway, manager_gateway)


async def require_manager(
    x_manager_id: Optional[int] = Header(None, alias="X-Manager-Id"),
    db: AsyncSession = Depends(get_db),
) -> Manager:
    """管理员接口：X-Manager-Id 必须对应一个启用中的管理员"""
    if x_manager_id is None:
        raise HTTPException(status_code=401, detail="缺少 X-Manager-Id")
    result = await db.execute(
        select(Manager).where(Manager.id == x_manager_id, Manager.is_active.is_(True))
    )
    manager = result.scalar_one_or_none()
    if manager is None:
        raise HTTPException(status_code=403, detail="管理员不存在或已停用")
    return manager

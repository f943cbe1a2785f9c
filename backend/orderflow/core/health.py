"""
健康检查：数据库、Redis、消息网关连通性
"""
import logging
from typing import Tuple

from orderflow.core.config import settings

logger = logging.getLogger(__name__)


async def check_db() -> Tuple[bool, str]:
    """检查数据库连通性"""
    if not getattr(settings, "DATABASE_URL", None) or not settings.DATABASE_URL.strip():
        return False, "DATABASE_URL 未配置"
    try:
        from orderflow.core.database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 DB 失败: %s", e)
        return False, str(e)


def check_redis() -> Tuple[bool, str]:
    """检查 Redis 连通性（缓存关闭时视为跳过）"""
    if not settings.CACHE_ENABLED:
        return True, "disabled"
    if not getattr(settings, "REDIS_URL", None) or not settings.REDIS_URL.strip():
        return False, "REDIS_URL 未配置"
    try:
        from orderflow.services import cache_service
        if not cache_service.ping():
            return False, "Redis 客户端未初始化"
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 Redis 失败: %s", e)
        return False, str(e)


async def check_gateway(gateway) -> Tuple[bool, str]:
    """检查消息网关（getMe）"""
    try:
        me = await gateway.get_me()
        return True, f"@{me.get('username', '')}"
    except Exception as e:
        logger.warning("健康检查消息网关失败: %s", e)
        return False, str(e)

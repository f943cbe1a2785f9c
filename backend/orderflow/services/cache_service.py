"""
Redis 缓存服务：通用 get/set/delete，用于运行时设置的读穿缓存
Redis 不可用时所有操作退化为未命中，不影响业务
"""
import json
import logging
from typing import Any, Optional

from orderflow.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def _get_redis():
    """获取 Redis 客户端（懒加载）"""
    global _redis_client
    if _redis_client is None:
        try:
            import redis
            _redis_client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
        except Exception as e:
            logger.warning("缓存 Redis 连接失败，缓存将不生效: %s", e)
    return _redis_client


def _key(name: str) -> str:
    prefix = getattr(settings, "CACHE_KEY_PREFIX", "orderflow:cache:")
    return f"{prefix}{name}"


def get(key: str) -> Optional[Any]:
    """从缓存读取，反序列化 JSON。不存在或异常返回 None。"""
    if not getattr(settings, "CACHE_ENABLED", True):
        return None
    r = _get_redis()
    if not r:
        return None
    try:
        raw = r.get(_key(key))
        if raw is None:
            return None
        return json.loads(raw)
    except Exception as e:
        logger.debug("缓存 get 失败 %s: %s", key, e)
        return None


def set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """写入缓存，value 会 JSON 序列化。ttl 秒，默认用 CACHE_TTL_SETTINGS。"""
    if not getattr(settings, "CACHE_ENABLED", True):
        return False
    r = _get_redis()
    if not r:
        return False
    if ttl is None:
        ttl = getattr(settings, "CACHE_TTL_SETTINGS", 30)
    try:
        r.setex(
            _key(key),
            ttl,
            json.dumps(value, ensure_ascii=False, default=str),
        )
        return True
    except Exception as e:
        logger.debug("缓存 set 失败 %s: %s", key, e)
        return False


def delete(key: str) -> bool:
    """删除单个 key。"""
    if not getattr(settings, "CACHE_ENABLED", True):
        return False
    r = _get_redis()
    if not r:
        return False
    try:
        r.delete(_key(key))
        return True
    except Exception as e:
        logger.debug("缓存 delete 失败 %s: %s", key, e)
        return False


def ping() -> bool:
    """健康检查用"""
    r = _get_redis()
    if not r:
        return False
    return bool(r.ping())


# ---------- 业务 key 约定，便于统一失效 ---------- #
def key_setting(name: str) -> str:
    return f"setting:{name}"

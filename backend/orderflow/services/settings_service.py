"""
运行时设置服务：数据库覆盖优先，其次环境变量默认值，最后代码内置默认值
读取走 Redis 读穿缓存（不可用时直接查库），写入/删除时失效对应 key
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.config import settings
from orderflow.models.setting import BotSetting
from orderflow.services import cache_service

logger = logging.getLogger(__name__)

DEFAULT_INVITE_EXPIRY_MINUTES = 60


class SettingKeys:
    """可在运行时修改的设置项"""
    PAYMENT_METHOD = "payment_method"
    INVITE_EXPIRY_MINUTES = "invite_expiry_minutes"
    CHECKOUT_IMAGE_FILE_ID = "checkout_image_file_id"
    CHECKOUT_CHANNEL_ID = "checkout_channel_id"

    ALL = (PAYMENT_METHOD, INVITE_EXPIRY_MINUTES, CHECKOUT_IMAGE_FILE_ID, CHECKOUT_CHANNEL_ID)


class SettingsService:
    """运行时设置服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, key: str) -> Optional[str]:
        """读取覆盖值，无记录返回 None"""
        cache_key = cache_service.key_setting(key)
        cached = await asyncio.to_thread(cache_service.get, cache_key)
        if cached is not None:
            return cached.get("value")
        try:
            result = await self.db.execute(select(BotSetting.value).where(BotSetting.key == key))
            value = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            # 表尚未创建等情况视为无覆盖
            logger.warning("读取设置 %s 失败，使用默认值: %s", key, e)
            return None
        await asyncio.to_thread(cache_service.set, cache_key, {"value": value})
        return value

    async def set(self, key: str, value: str) -> None:
        row = await self.db.get(BotSetting, key)
        if row is None:
            self.db.add(BotSetting(key=key, value=value))
        else:
            row.value = value
        await self.db.commit()
        await asyncio.to_thread(cache_service.delete, cache_service.key_setting(key))
        logger.info("设置已更新 %s=%s", key, value)

    async def delete(self, key: str) -> None:
        """删除覆盖值，恢复默认；key 不存在也视为成功"""
        await self.db.execute(delete(BotSetting).where(BotSetting.key == key))
        await self.db.commit()
        await asyncio.to_thread(cache_service.delete, cache_service.key_setting(key))
        logger.info("设置已恢复默认 %s", key)

    async def get_payment_method(self) -> str:
        """付款方式：channel | direct。库中值非法时回退到环境默认"""
        value = await self.get(SettingKeys.PAYMENT_METHOD)
        if value in settings.payment_methods:
            return value
        if value:
            logger.warning("payment_method 设置值非法: %s，使用默认 %s", value, settings.PAYMENT_METHOD)
        default = settings.PAYMENT_METHOD
        return default if default in settings.payment_methods else "channel"

    async def get_invite_expiry_minutes(self, env_fallback: Optional[int] = None) -> int:
        """付款窗口分钟数：库中正整数 -> env_fallback -> 60"""
        value = await self.get(SettingKeys.INVITE_EXPIRY_MINUTES)
        if value:
            try:
                parsed = int(value)
                if parsed > 0:
                    return parsed
            except ValueError:
                pass
            logger.warning("invite_expiry_minutes 设置值非法: %s", value)
        if env_fallback is not None and env_fallback > 0:
            return env_fallback
        return DEFAULT_INVITE_EXPIRY_MINUTES

    async def get_checkout_image_file_id(self, env_fallback: Optional[str] = None) -> Optional[str]:
        value = await self.get(SettingKeys.CHECKOUT_IMAGE_FILE_ID)
        return value or env_fallback or None

    async def get_checkout_channel_id(self, env_fallback: Optional[str] = None) -> Optional[str]:
        value = await self.get(SettingKeys.CHECKOUT_CHANNEL_ID)
        return value or env_fallback or None

    async def snapshot(self) -> dict:
        """当前生效的全部设置"""
        return {
            "payment_method": await self.get_payment_method(),
            "invite_expiry_minutes": await self.get_invite_expiry_minutes(settings.INVITE_EXPIRY_MINUTES),
            "checkout_image_file_id": await self.get_checkout_image_file_id(settings.CHECKOUT_IMAGE_FILE_ID),
            "checkout_channel_id": await self.get_checkout_channel_id(settings.CHECKOUT_CHANNEL_ID),
        }

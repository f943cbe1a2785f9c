"""
运行时设置Schema
"""
from pydantic import BaseModel
from typing import Optional


class SettingUpdate(BaseModel):
    value: str


class SettingItem(BaseModel):
    key: str
    value: Optional[str] = None


class EffectiveSettingsResponse(BaseModel):
    """当前生效的设置（数据库覆盖优先，其次环境默认值）"""
    payment_method: str
    invite_expiry_minutes: int
    checkout_image_file_id: Optional[str] = None
    checkout_channel_id: Optional[str] = None

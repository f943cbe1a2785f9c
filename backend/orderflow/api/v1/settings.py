"""
运行时设置API（管理员）
"""
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import require_manager
from orderflow.core.config import settings as app_settings
from orderflow.core.database import get_db
from orderflow.models.user import Manager
from orderflow.schemas.settings import EffectiveSettingsResponse, SettingItem, SettingUpdate
from orderflow.services.settings_service import SettingKeys, SettingsService

router = APIRouter()


def _validate(key: str, value: str) -> None:
    if key not in SettingKeys.ALL:
        raise HTTPException(status_code=404, detail=f"未知的设置项: {key}")
    if key == SettingKeys.PAYMENT_METHOD and value not in app_settings.payment_methods:
        raise HTTPException(status_code=422, detail=f"payment_method 只能是 {', '.join(app_settings.payment_methods)}")
    if key == SettingKeys.INVITE_EXPIRY_MINUTES:
        if not value.isdigit() or int(value) <= 0:
            raise HTTPException(status_code=422, detail="invite_expiry_minutes 必须是正整数")


@router.get("", response_model=EffectiveSettingsResponse)
async def get_settings(
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """当前生效的设置"""
    return await SettingsService(db).snapshot()


@router.put("/{key}", response_model=SettingItem)
async def put_setting(
    key: str,
    body: SettingUpdate,
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    value = body.value.strip()
    _validate(key, value)
    await SettingsService(db).set(key, value)
    return SettingItem(key=key, value=value)


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_setting(
    key: str,
    manager: Manager = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """删除覆盖值，恢复默认"""
    if key not in SettingKeys.ALL:
        raise HTTPException(status_code=404, detail=f"未知的设置项: {key}")
    await SettingsService(db).delete(key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

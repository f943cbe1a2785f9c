"""
运行时设置：数据库覆盖优先，其次环境默认值，最后内置默认值
"""
import pytest

from orderflow.core.config import settings
from orderflow.services.settings_service import SettingKeys, SettingsService


@pytest.fixture
def store(db):
    return SettingsService(db)


class TestSettingsService:

    async def test_missing_key_is_none(self, store):
        assert await store.get(SettingKeys.PAYMENT_METHOD) is None

    async def test_set_get_delete(self, store):
        await store.set(SettingKeys.CHECKOUT_IMAGE_FILE_ID, "file-1")
        assert await store.get(SettingKeys.CHECKOUT_IMAGE_FILE_ID) == "file-1"
        await store.set(SettingKeys.CHECKOUT_IMAGE_FILE_ID, "file-2")
        assert await store.get(SettingKeys.CHECKOUT_IMAGE_FILE_ID) == "file-2"
        await store.delete(SettingKeys.CHECKOUT_IMAGE_FILE_ID)
        assert await store.get(SettingKeys.CHECKOUT_IMAGE_FILE_ID) is None

    async def test_payment_method_override_and_invalid_value(self, store, monkeypatch):
        monkeypatch.setattr(settings, "PAYMENT_METHOD", "channel")
        assert await store.get_payment_method() == "channel"
        await store.set(SettingKeys.PAYMENT_METHOD, "direct")
        assert await store.get_payment_method() == "direct"
        await store.set(SettingKeys.PAYMENT_METHOD, "carrier-pigeon")
        assert await store.get_payment_method() == "channel"

    @pytest.mark.parametrize("stored,expected", [(None, 45), ("30", 30), ("0", 45), ("-5", 45), ("abc", 45)])
    async def test_invite_expiry_minutes(self, store, stored, expected):
        if stored is not None:
            await store.set(SettingKeys.INVITE_EXPIRY_MINUTES, stored)
        assert await store.get_invite_expiry_minutes(45) == expected

    async def test_invite_expiry_compiled_default(self, store):
        assert await store.get_invite_expiry_minutes(None) == 60

    async def test_db_override_beats_env_fallback(self, store):
        assert await store.get_checkout_channel_id("-100env") == "-100env"
        await store.set(SettingKeys.CHECKOUT_CHANNEL_ID, "-100db")
        assert await store.get_checkout_channel_id("-100env") == "-100db"
        assert await store.get_checkout_image_file_id(None) is None

    async def test_snapshot(self, store, monkeypatch):
        monkeypatch.setattr(settings, "INVITE_EXPIRY_MINUTES", 90)
        await store.set(SettingKeys.PAYMENT_METHOD, "direct")
        snap = await store.snapshot()
        assert snap["payment_method"] == "direct"
        assert snap["invite_expiry_minutes"] == 90
        assert snap["checkout_channel_id"] is None

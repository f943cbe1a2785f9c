"""
消息网关：核心逻辑只依赖 MessagingGateway 能力接口
- TelegramGateway：通过 httpx 调用 Telegram Bot API
- NullMessagingGateway：未配置 token 时的空实现（所有调用成功但不发送任何内容）
"""
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from orderflow.core.config import settings
from orderflow.core.exceptions import MessagingError

logger = logging.getLogger(__name__)


class MessagingGateway(Protocol):
    """订单核心依赖的消息能力"""

    async def send_message(self, chat_id, text: str, parse_mode: Optional[str] = None) -> int: ...

    async def send_photo(self, chat_id, photo: str, caption: Optional[str] = None, parse_mode: Optional[str] = None) -> int: ...

    async def create_invite_link(self, chat_id, member_limit: int, name: str, expires_at: datetime) -> str: ...

    async def revoke_invite_link(self, chat_id, invite_link: str) -> None: ...

    async def ban_member(self, chat_id, user_id: int) -> None: ...

    async def unban_member(self, chat_id, user_id: int, only_if_banned: bool = True) -> None: ...

    async def delete_message(self, chat_id, message_id: int) -> None: ...

    async def get_me(self) -> Dict[str, Any]: ...

    async def aclose(self) -> None: ...


def _unix(dt: datetime) -> int:
    """naive 时间按 UTC 处理"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


class TelegramGateway:
    """Telegram Bot API 实现"""

    def __init__(
        self,
        token: str,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not token:
            raise ValueError("Telegram bot token 不能为空")
        self._token = token
        self._api_base = (api_base or settings.TELEGRAM_API_BASE).rstrip("/")
        self._timeout = timeout or settings.TELEGRAM_TIMEOUT
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        """调用 Bot API，网络异常与 ok=false 统一转换为 MessagingError"""
        url = f"{self._api_base}/bot{self._token}/{method}"
        body = {k: v for k, v in payload.items() if v is not None}
        try:
            resp = await self._get_client().post(url, json=body)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MessagingError(f"{method} 请求失败: {e}", method=method) from e
        if not data.get("ok"):
            raise MessagingError(
                f"{method} 失败: {data.get('description', 'unknown error')}",
                method=method,
                error_code=data.get("error_code"),
            )
        return data.get("result")

    async def send_message(self, chat_id, text: str, parse_mode: Optional[str] = None) -> int:
        result = await self._call("sendMessage", {"chat_id": chat_id, "text": text, "parse_mode": parse_mode})
        return result["message_id"]

    async def send_photo(self, chat_id, photo: str, caption: Optional[str] = None, parse_mode: Optional[str] = None) -> int:
        result = await self._call(
            "sendPhoto",
            {"chat_id": chat_id, "photo": photo, "caption": caption, "parse_mode": parse_mode},
        )
        return result["message_id"]

    async def create_invite_link(self, chat_id, member_limit: int, name: str, expires_at: datetime) -> str:
        result = await self._call(
            "createChatInviteLink",
            {
                "chat_id": chat_id,
                "member_limit": member_limit,
                "name": name,
                "expire_date": _unix(expires_at),
            },
        )
        return result["invite_link"]

    async def revoke_invite_link(self, chat_id, invite_link: str) -> None:
        await self._call("revokeChatInviteLink", {"chat_id": chat_id, "invite_link": invite_link})

    async def ban_member(self, chat_id, user_id: int) -> None:
        await self._call("banChatMember", {"chat_id": chat_id, "user_id": user_id})

    async def unban_member(self, chat_id, user_id: int, only_if_banned: bool = True) -> None:
        await self._call(
            "unbanChatMember",
            {"chat_id": chat_id, "user_id": user_id, "only_if_banned": only_if_banned},
        )

    async def delete_message(self, chat_id, message_id: int) -> None:
        await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    async def get_me(self) -> Dict[str, Any]:
        return await self._call("getMe", {})

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None


class NullMessagingGateway:
    """空实现：返回合成的消息 id / 邀请链接"""

    def __init__(self):
        self._ids = itertools.count(1)

    async def send_message(self, chat_id, text: str, parse_mode: Optional[str] = None) -> int:
        return next(self._ids)

    async def send_photo(self, chat_id, photo: str, caption: Optional[str] = None, parse_mode: Optional[str] = None) -> int:
        return next(self._ids)

    async def create_invite_link(self, chat_id, member_limit: int, name: str, expires_at: datetime) -> str:
        return f"https://t.me/+null{next(self._ids)}"

    async def revoke_invite_link(self, chat_id, invite_link: str) -> None:
        return None

    async def ban_member(self, chat_id, user_id: int) -> None:
        return None

    async def unban_member(self, chat_id, user_id: int, only_if_banned: bool = True) -> None:
        return None

    async def delete_message(self, chat_id, message_id: int) -> None:
        return None

    async def get_me(self) -> Dict[str, Any]:
        return {"id": 0, "is_bot": True, "username": "null"}

    async def aclose(self) -> None:
        return None


def _build_gateway(token: str, label: str) -> MessagingGateway:
    if not token:
        logger.warning("%s 未配置 bot token，消息发送将被忽略", label)
        return NullMessagingGateway()
    return TelegramGateway(token)


def get_client_gateway() -> MessagingGateway:
    """买家/结账频道机器人"""
    return _build_gateway(settings.CLIENT_BOT_TOKEN, "CLIENT_BOT_TOKEN")


def get_manager_gateway() -> MessagingGateway:
    """管理员通知机器人"""
    return _build_gateway(settings.MANAGER_BOT_TOKEN, "MANAGER_BOT_TOKEN")

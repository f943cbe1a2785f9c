"""
测试公共夹具：内存 sqlite、记录调用的假消息网关、数据构造工具
"""
import itertools
import os
import tempfile
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

# 必须在导入 orderflow 之前设置
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["CLIENT_BOT_TOKEN"] = ""
os.environ["MANAGER_BOT_TOKEN"] = ""
os.environ["CHECKOUT_CHANNEL_ID"] = ""
os.environ["CHECKOUT_IMAGE_FILE_ID"] = ""
os.environ["PAYMENT_METHOD"] = "channel"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "orderflow-tests.log")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from orderflow.core.database import Base
from orderflow.core.exceptions import MessagingError
from orderflow.models import (
    Cart,
    CartItem,
    CartState,
    Discount,
    DiscountType,
    Manager,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Receipt,
    ReceiptReviewStatus,
    User,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)
CHANNEL_ID = "-1001234567890"


class RecordingGateway:
    """记录所有调用的消息网关；fail_on 注入失败"""

    def __init__(self):
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._failures: Dict[str, Optional[int]] = {}
        self._ids = itertools.count(500)
        self.closed = False

    def fail_on(self, method: str, times: Optional[int] = None) -> None:
        """times=None 表示一直失败"""
        self._failures[method] = times

    def called(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append((method, kwargs))
        if method in self._failures:
            remaining = self._failures[method]
            if remaining is None:
                raise MessagingError(f"{method} 失败（测试注入）", method=method)
            if remaining > 0:
                self._failures[method] = remaining - 1
                raise MessagingError(f"{method} 失败（测试注入）", method=method)

    async def send_message(self, chat_id, text, parse_mode=None):
        self._record("send_message", chat_id=chat_id, text=text, parse_mode=parse_mode)
        return next(self._ids)

    async def send_photo(self, chat_id, photo, caption=None, parse_mode=None):
        self._record("send_photo", chat_id=chat_id, photo=photo, caption=caption, parse_mode=parse_mode)
        return next(self._ids)

    async def create_invite_link(self, chat_id, member_limit, name, expires_at):
        self._record("create_invite_link", chat_id=chat_id, member_limit=member_limit, name=name, expires_at=expires_at)
        return f"https://t.me/+invite{next(self._ids)}"

    async def revoke_invite_link(self, chat_id, invite_link):
        self._record("revoke_invite_link", chat_id=chat_id, invite_link=invite_link)

    async def ban_member(self, chat_id, user_id):
        self._record("ban_member", chat_id=chat_id, user_id=user_id)

    async def unban_member(self, chat_id, user_id, only_if_banned=True):
        self._record("unban_member", chat_id=chat_id, user_id=user_id, only_if_banned=only_if_banned)

    async def delete_message(self, chat_id, message_id):
        self._record("delete_message", chat_id=chat_id, message_id=message_id)

    async def get_me(self):
        self._record("get_me")
        return {"id": 1, "is_bot": True, "username": "test_bot"}

    async def aclose(self):
        self.closed = True


class Seed:
    """测试数据构造"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._tg = itertools.count(10_000)

    async def user(self, **kw) -> User:
        user = User(tg_user_id=kw.pop("tg_user_id", next(self._tg)), first_name=kw.pop("first_name", "Buyer"), **kw)
        self.db.add(user)
        await self.db.commit()
        return user

    async def manager(self, is_active: bool = True) -> Manager:
        manager = Manager(tg_user_id=next(self._tg), is_active=is_active)
        self.db.add(manager)
        await self.db.commit()
        return manager

    async def product(self, price: int = 1000, stock: Optional[int] = None, is_active: bool = True, currency: str = "IRR") -> Product:
        product = Product(title=f"P{price}", price=price, stock=stock, is_active=is_active, currency=currency)
        self.db.add(product)
        await self.db.commit()
        return product

    async def cart(self, user: User, lines: List[Tuple[Product, int]], state: CartState = CartState.ACTIVE) -> Cart:
        cart = Cart(user_id=user.id, state=state)
        self.db.add(cart)
        await self.db.flush()
        for product, qty in lines:
            self.db.add(CartItem(cart_id=cart.id, product_id=product.id, qty=qty, unit_price_snapshot=product.price))
        await self.db.commit()
        return cart

    async def discount(self, **kw) -> Discount:
        kw.setdefault("type", DiscountType.PERCENT)
        kw.setdefault("value", 10)
        kw.setdefault("stackable", False)
        kw.setdefault("is_active", True)
        discount = Discount(**kw)
        self.db.add(discount)
        await self.db.commit()
        return discount

    async def order(self, user: User, status: OrderStatus = OrderStatus.AWAITING_APPROVAL, grand_total: int = 3000, **kw) -> Order:
        """直接构造某状态的订单（带一条明细）"""
        product = await self.product(price=grand_total)
        order = Order(
            user_id=user.id,
            subtotal=grand_total,
            discount_total=0,
            grand_total=grand_total,
            status=status,
            **kw,
        )
        self.db.add(order)
        await self.db.flush()
        self.db.add(
            OrderItem(order_id=order.id, product_id=product.id, qty=1, unit_price_snapshot=grand_total, line_total=grand_total)
        )
        await self.db.commit()
        return order

    async def receipt(self, order: Order, status: ReceiptReviewStatus = ReceiptReviewStatus.PENDING) -> Receipt:
        receipt = Receipt(order_id=order.id, user_id=order.user_id, file_id="photo-file", review_status=status)
        self.db.add(receipt)
        await self.db.commit()
        return receipt

    async def invited_order(self, user: User, expires_at: datetime, status: OrderStatus = OrderStatus.INVITE_SENT) -> Order:
        return await self.order(
            user,
            status=status,
            invite_link="https://t.me/+expired",
            invite_sent_at=expires_at - timedelta(minutes=60),
            invite_expires_at=expires_at,
            channel_message_id=77,
        )


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(db) -> Seed:
    return Seed(db)


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def manager_gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def channel(monkeypatch):
    """配置结算频道（环境级默认值）"""
    from orderflow.core.config import settings
    monkeypatch.setattr(settings, "CHECKOUT_CHANNEL_ID", CHANNEL_ID)
    return CHANNEL_ID

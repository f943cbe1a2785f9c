"""
订单账本：购物车 -> 订单的原子转换
"""
import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import NOW, Seed
from orderflow.core.database import Base
from orderflow.core.exceptions import (
    CartNotActiveError,
    CartNotFoundError,
    DiscountUnavailableError,
    EmptyCartError,
    InsufficientStockError,
    InvalidOrderTransitionError,
)
from orderflow.models import Cart, CartState, Discount, DiscountType, DiscountUsage, Order, OrderEvent, OrderStatus, Product
from orderflow.schemas.discount import AppliedDiscount
from orderflow.services import order_service
from orderflow.services.order_service import OrderService


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar()


async def _reload(db, model, pk):
    return await db.get(model, pk, populate_existing=True)


@pytest.fixture
def ledger(db, clock):
    return OrderService(db, now=clock)


class TestCreateOrderFromCart:

    async def test_creates_order_items_event_and_submits_cart(self, ledger, seed, db):
        user = await seed.user()
        p1 = await seed.product(price=1000, stock=5)
        p2 = await seed.product(price=500, stock=None)
        cart = await seed.cart(user, [(p1, 2), (p2, 2)])

        result = await ledger.create_order_from_cart(user.id, cart.id)

        assert result.subtotal == 3000
        assert result.discount_total == 0
        assert result.grand_total == 3000
        order = await ledger.get_order(result.order_id)
        assert order.status == OrderStatus.AWAITING_APPROVAL
        assert [(i.product_id, i.qty, i.line_total) for i in order.items] == [(p1.id, 2, 2000), (p2.id, 2, 1000)]
        assert (await _reload(db, Cart, cart.id)).state == CartState.SUBMITTED
        assert (await _reload(db, Product, p1.id)).stock == 3
        assert (await _reload(db, Product, p2.id)).stock is None

        events = (await db.execute(select(OrderEvent).where(OrderEvent.order_id == order.id))).scalars().all()
        assert [e.event_type for e in events] == ["order_created"]

    async def test_discount_recorded_and_total_capped(self, ledger, seed, db):
        user = await seed.user()
        product = await seed.product(price=1000)
        cart = await seed.cart(user, [(product, 1)])
        d1 = await seed.discount(type=DiscountType.FIXED, value=800)
        d2 = await seed.discount(code="X", type=DiscountType.FIXED, value=800, stackable=True)

        result = await ledger.create_order_from_cart(
            user.id,
            cart.id,
            [
                AppliedDiscount(discount_id=d1.id, amount=800, description="auto"),
                AppliedDiscount(discount_id=d2.id, code="X", amount=800, description="X"),
            ],
        )

        assert result.discount_total == 1000
        assert result.grand_total == 0
        usages = (await db.execute(select(DiscountUsage).order_by(DiscountUsage.id))).scalars().all()
        assert [(u.discount_id, u.order_id, u.amount) for u in usages] == [
            (d1.id, result.order_id, 800),
            (d2.id, result.order_id, 200),
        ]
        assert sum(u.amount for u in usages) == result.discount_total

    async def test_insufficient_stock_leaves_everything_unchanged(self, ledger, seed, db):
        user = await seed.user()
        product = await seed.product(price=1000, stock=1)
        cart = await seed.cart(user, [(product, 2)])
        product_id, cart_id, user_id = product.id, cart.id, user.id

        with pytest.raises(InsufficientStockError):
            await ledger.create_order_from_cart(user_id, cart_id)

        assert (await _reload(db, Product, product_id)).stock == 1
        assert (await _reload(db, Cart, cart_id)).state == CartState.ACTIVE
        assert await _count(db, Order) == 0

    async def test_stock_checked_for_all_items_before_decrement(self, ledger, seed, db):
        user = await seed.user()
        plenty = await seed.product(price=100, stock=10)
        scarce = await seed.product(price=100, stock=1)
        cart = await seed.cart(user, [(plenty, 3), (scarce, 2)])
        plenty_id = plenty.id

        with pytest.raises(InsufficientStockError):
            await ledger.create_order_from_cart(user.id, cart.id)
        assert (await _reload(db, Product, plenty_id)).stock == 10

    async def test_repeated_product_lines_are_summed(self, ledger, seed, db):
        user = await seed.user()
        product = await seed.product(price=100, stock=3)
        cart = await seed.cart(user, [(product, 2), (product, 2)])
        product_id = product.id

        with pytest.raises(InsufficientStockError):
            await ledger.create_order_from_cart(user.id, cart.id)
        assert (await _reload(db, Product, product_id)).stock == 3

    async def test_inactive_product_rejected(self, ledger, seed):
        user = await seed.user()
        product = await seed.product(price=100, is_active=False)
        cart = await seed.cart(user, [(product, 1)])
        with pytest.raises(InsufficientStockError):
            await ledger.create_order_from_cart(user.id, cart.id)

    async def test_cart_of_other_user_not_found(self, ledger, seed):
        owner = await seed.user()
        stranger = await seed.user()
        product = await seed.product()
        cart = await seed.cart(owner, [(product, 1)])
        with pytest.raises(CartNotFoundError):
            await ledger.create_order_from_cart(stranger.id, cart.id)

    async def test_submitted_cart_not_active(self, ledger, seed):
        user = await seed.user()
        product = await seed.product()
        cart = await seed.cart(user, [(product, 1)], state=CartState.SUBMITTED)
        with pytest.raises(CartNotActiveError):
            await ledger.create_order_from_cart(user.id, cart.id)

    async def test_empty_cart(self, ledger, seed):
        user = await seed.user()
        cart = await seed.cart(user, [])
        with pytest.raises(EmptyCartError):
            await ledger.create_order_from_cart(user.id, cart.id)

    async def test_same_cart_cannot_be_checked_out_twice(self, ledger, seed, db):
        user = await seed.user()
        product = await seed.product(stock=5)
        product_id = product.id
        cart = await seed.cart(user, [(product, 1)])
        await ledger.create_order_from_cart(user.id, cart.id)
        with pytest.raises(CartNotActiveError):
            await ledger.create_order_from_cart(user.id, cart.id)
        assert (await _reload(db, Product, product_id)).stock == 4

    async def test_per_user_limit_enforced_across_checkouts(self, ledger, seed, db):
        user = await seed.user()
        product = await seed.product(price=1000, stock=10)
        discount = await seed.discount(code="ONCE", type=DiscountType.FIXED, value=100, per_user_limit=1)
        applied = [AppliedDiscount(discount_id=discount.id, code="ONCE", amount=100, description="ONCE")]
        first_cart = await seed.cart(user, [(product, 1)])
        second_cart = await seed.cart(user, [(product, 1)])
        product_id, second_cart_id, discount_id = product.id, second_cart.id, discount.id

        # 两次结算都基于同一份预览
        await ledger.create_order_from_cart(user.id, first_cart.id, applied)
        with pytest.raises(DiscountUnavailableError):
            await ledger.create_order_from_cart(user.id, second_cart.id, applied)

        assert await _count(db, DiscountUsage) == 1
        assert await _count(db, Order) == 1
        assert (await _reload(db, Product, product_id)).stock == 9
        assert (await _reload(db, Cart, second_cart_id)).state == CartState.ACTIVE
        assert (await _reload(db, Discount, discount_id)).uses_count == 1


class TestConcurrentCheckout:
    """两个会话同时结算（文件数据库，真实的连接级锁）"""

    @pytest.fixture
    async def file_factory(self, tmp_path):
        eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False, autoflush=False)
        await eng.dispose()

    async def test_per_user_limit_holds_for_concurrent_checkouts(self, file_factory, monkeypatch):
        async with file_factory() as session:
            seed = Seed(session)
            user = await seed.user()
            product = await seed.product(price=1000)
            carts = [await seed.cart(user, [(product, 1)]) for _ in range(2)]
            discount = await seed.discount(code="ONCE", type=DiscountType.FIXED, value=100, per_user_limit=1)
            user_id, cart_ids, discount_id = user.id, [c.id for c in carts], discount.id
        applied = [AppliedDiscount(discount_id=discount_id, code="ONCE", amount=100, description="ONCE")]

        # 拉长“已计数、未写入”的窗口，让两个结算交错
        real_check = order_service.usage_cap_reached

        async def slow_check(*args, **kwargs):
            reached = await real_check(*args, **kwargs)
            await asyncio.sleep(0.05)
            return reached

        monkeypatch.setattr(order_service, "usage_cap_reached", slow_check)

        async def checkout(cart_id):
            async with file_factory() as session:
                return await OrderService(session, now=lambda: NOW).create_order_from_cart(user_id, cart_id, applied)

        results = await asyncio.gather(*(checkout(cart_id) for cart_id in cart_ids), return_exceptions=True)

        created = [r for r in results if not isinstance(r, BaseException)]
        failed = [r for r in results if isinstance(r, BaseException)]
        assert len(created) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], DiscountUnavailableError)
        async with file_factory() as session:
            assert await _count(session, DiscountUsage) == 1
            assert await _count(session, Order) == 1
            assert (await session.get(Discount, discount_id)).uses_count == 1


class TestCompleteOrder:

    async def test_paid_to_completed(self, ledger, seed):
        user = await seed.user()
        order = await seed.order(user, status=OrderStatus.PAID)
        completed = await ledger.complete_order(order.id, actor_id=1)
        assert completed.status == OrderStatus.COMPLETED

    async def test_only_paid_orders_complete(self, ledger, seed):
        user = await seed.user()
        order = await seed.order(user, status=OrderStatus.AWAITING_RECEIPT)
        with pytest.raises(InvalidOrderTransitionError):
            await ledger.complete_order(order.id)

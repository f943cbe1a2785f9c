"""
购物车服务与结算预览
"""
from datetime import timedelta

import pytest

from conftest import NOW
from orderflow.core.exceptions import CartNotActiveError, CartNotFoundError, InsufficientStockError, ProductNotFoundError
from orderflow.models import Cart, CartState, DiscountType, Order, OrderStatus
from orderflow.services.cart_service import CartService
from orderflow.services.checkout_service import CheckoutService
from orderflow.services.notification_service import NotificationService


@pytest.fixture
def carts(db, clock):
    return CartService(db, now=clock)


class TestCartService:

    async def test_get_or_create_reuses_active_cart(self, carts, seed):
        user = await seed.user()
        first = await carts.get_or_create_active_cart(user.id)
        second = await carts.get_or_create_active_cart(user.id)
        assert first.id == second.id
        assert first.state == CartState.ACTIVE

    async def test_add_item_snapshots_price_and_merges(self, carts, seed):
        user = await seed.user()
        product = await seed.product(price=700, stock=5)
        cart = await carts.get_or_create_active_cart(user.id)
        await carts.add_item(cart.id, product.id, 2)
        await carts.add_item(cart.id, product.id, 1)

        context = await carts.build_cart_context(cart.id, user.id)
        assert [(i.product_id, i.qty, i.unit_price) for i in context.items] == [(product.id, 3, 700)]

    async def test_add_item_checks_stock_and_product(self, carts, seed):
        user = await seed.user()
        scarce = await seed.product(stock=1)
        hidden = await seed.product(is_active=False)
        cart = await carts.get_or_create_active_cart(user.id)
        with pytest.raises(InsufficientStockError):
            await carts.add_item(cart.id, scarce.id, 2)
        with pytest.raises(ProductNotFoundError):
            await carts.add_item(cart.id, hidden.id, 1)

    async def test_add_item_to_submitted_cart(self, carts, seed):
        user = await seed.user()
        product = await seed.product()
        cart = await seed.cart(user, [], state=CartState.SUBMITTED)
        with pytest.raises(CartNotActiveError):
            await carts.add_item(cart.id, product.id, 1)

    async def test_remove_item(self, carts, seed):
        user = await seed.user()
        a = await seed.product(price=100)
        b = await seed.product(price=200)
        cart = await seed.cart(user, [(a, 1), (b, 1)])
        await carts.remove_item(cart.id, a.id)
        context = await carts.build_cart_context(cart.id)
        assert [i.product_id for i in context.items] == [b.id]

    async def test_context_for_other_user(self, carts, seed):
        owner = await seed.user()
        stranger = await seed.user()
        cart = await seed.cart(owner, [])
        with pytest.raises(CartNotFoundError):
            await carts.build_cart_context(cart.id, stranger.id)

    async def test_expire_idle_carts(self, carts, seed, db):
        user = await seed.user()
        idle = await seed.cart(user, [])
        fresh = await seed.cart(user, [])
        submitted = await seed.cart(user, [], state=CartState.SUBMITTED)
        idle.updated_at = NOW - timedelta(hours=30)
        fresh.updated_at = NOW - timedelta(hours=1)
        submitted.updated_at = NOW - timedelta(hours=30)
        await db.commit()
        ids = (idle.id, fresh.id, submitted.id)

        assert await carts.expire_idle_carts(24) == 1
        states = [(await db.get(Cart, cid, populate_existing=True)).state for cid in ids]
        assert states == [CartState.EXPIRED, CartState.ACTIVE, CartState.SUBMITTED]


class TestCheckoutService:

    async def test_quote_then_checkout_notifies_managers(self, db, seed, clock, gateway, manager_gateway):
        user = await seed.user()
        manager = await seed.manager()
        await seed.manager(is_active=False)
        product = await seed.product(price=1000, stock=10)
        cart = await seed.cart(user, [(product, 3)])
        await seed.discount(type=DiscountType.PERCENT, value=10, min_amount=1000)

        notifications = NotificationService(db, gateway, manager_gateway)
        service = CheckoutService(db, notifications=notifications, now=clock)
        quote = await service.quote(user.id, cart.id)
        assert (quote.total_discount, quote.grand_total) == (300, 2700)

        result = await service.checkout(user.id, cart.id)
        assert result.grand_total == 2700
        order = await db.get(Order, result.order_id, populate_existing=True)
        assert order.status == OrderStatus.AWAITING_APPROVAL

        sent = manager_gateway.called("send_message")
        assert [m["chat_id"] for m in sent] == [manager.tg_user_id]
        assert f"#{result.order_id}" in sent[0]["text"]

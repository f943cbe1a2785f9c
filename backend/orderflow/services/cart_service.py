"""
购物车服务：维护 ACTIVE 购物车、构建折扣引擎输入、过期闲置购物车
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orderflow.core.clock import utcnow
from orderflow.core.exceptions import CartNotFoundError, CartNotActiveError, ProductNotFoundError, InsufficientStockError
from orderflow.models.cart import Cart, CartItem, CartState
from orderflow.models.product import Product
from orderflow.schemas.discount import CartContext, CartItemInput

logger = logging.getLogger(__name__)


class CartService:
    """购物车服务类"""

    def __init__(self, db: AsyncSession, now: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = now

    async def get_cart(self, cart_id: int, user_id: Optional[int] = None) -> Cart:
        result = await self.db.execute(
            select(Cart)
            .options(selectinload(Cart.items))
            .where(Cart.id == cart_id)
            .execution_options(populate_existing=True)
        )
        cart = result.scalar_one_or_none()
        if not cart or (user_id is not None and cart.user_id != user_id):
            raise CartNotFoundError()
        return cart

    async def get_or_create_active_cart(self, user_id: int) -> Cart:
        result = await self.db.execute(
            select(Cart)
            .options(selectinload(Cart.items))
            .where(Cart.user_id == user_id, Cart.state == CartState.ACTIVE)
            .order_by(Cart.id.desc())
        )
        cart = result.scalars().first()
        if cart:
            return cart
        cart = Cart(user_id=user_id, state=CartState.ACTIVE)
        self.db.add(cart)
        await self.db.commit()
        return await self.get_cart(cart.id)

    async def add_item(self, cart_id: int, product_id: int, qty: int = 1) -> CartItem:
        """加入商品并快照当前单价；同一商品合并数量"""
        if qty <= 0:
            raise ValueError("数量必须大于 0")
        cart = await self.get_cart(cart_id)
        if cart.state != CartState.ACTIVE:
            raise CartNotActiveError()
        product = await self.db.get(Product, product_id)
        if not product or not product.is_active:
            raise ProductNotFoundError()

        existing = next((it for it in cart.items if it.product_id == product_id), None)
        new_qty = qty + (existing.qty if existing else 0)
        if product.stock is not None and new_qty > product.stock:
            raise InsufficientStockError(f"商品 {product_id} 库存不足")

        if existing:
            existing.qty = new_qty
            item = existing
        else:
            item = CartItem(cart_id=cart.id, product_id=product_id, qty=qty, unit_price_snapshot=product.price)
            self.db.add(item)
        cart.updated_at = self._now()
        await self.db.commit()
        return item

    async def remove_item(self, cart_id: int, product_id: int) -> None:
        cart = await self.get_cart(cart_id)
        if cart.state != CartState.ACTIVE:
            raise CartNotActiveError()
        for item in list(cart.items):
            if item.product_id == product_id:
                await self.db.delete(item)
        cart.updated_at = self._now()
        await self.db.commit()

    async def build_cart_context(self, cart_id: int, user_id: Optional[int] = None) -> CartContext:
        """折扣引擎输入：使用加入购物车时的价格快照"""
        cart = await self.get_cart(cart_id, user_id)
        return CartContext(
            user_id=cart.user_id,
            items=[
                CartItemInput(product_id=it.product_id, qty=it.qty, unit_price=it.unit_price_snapshot)
                for it in cart.items
            ],
        )

    async def expire_idle_carts(self, idle_hours: int) -> int:
        """ACTIVE 且超过 idle_hours 未更新的购物车置为 EXPIRED，返回数量"""
        cutoff = self._now() - timedelta(hours=idle_hours)
        result = await self.db.execute(
            update(Cart)
            .where(Cart.state == CartState.ACTIVE, Cart.updated_at < cutoff)
            .values(state=CartState.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            logger.info("闲置购物车已过期 count=%s cutoff=%s", count, cutoff.isoformat())
        return count

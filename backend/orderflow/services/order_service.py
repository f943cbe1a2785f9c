"""
订单账本：购物车 -> 订单的原子转换，以及订单查询与完成

create_order_from_cart 在一个数据库事务内完成：库存校验、库存扣减、订单/明细/事件创建、
折扣使用记录、购物车 ACTIVE -> SUBMITTED。任何异常都会整体回滚，调用方可认为
“未创建订单，购物车未改变”。
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orderflow.core.clock import utcnow
from orderflow.core.exceptions import (
    CartNotFoundError,
    CartNotActiveError,
    EmptyCartError,
    InsufficientStockError,
    DiscountUnavailableError,
    OrderNotFoundError,
)
from orderflow.models.cart import Cart, CartState
from orderflow.models.discount import Discount, DiscountUsage
from orderflow.models.order import Order, OrderItem, OrderStatus
from orderflow.models.order_event import ActorType
from orderflow.models.product import Product
from orderflow.schemas.discount import AppliedDiscount
from orderflow.schemas.events import OrderCreatedPayload, OrderCompletedPayload
from orderflow.schemas.order import CreateOrderResult
from orderflow.services.discount_service import usage_cap_reached
from orderflow.services.event_service import record_order_event
from orderflow.services.order_state import transition_order

logger = logging.getLogger(__name__)


class OrderService:
    """订单服务类"""

    def __init__(self, db: AsyncSession, now: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = now

    async def create_order_from_cart(
        self,
        user_id: int,
        cart_id: int,
        applied_discounts: Optional[List[AppliedDiscount]] = None,
    ) -> CreateOrderResult:
        """把 ACTIVE 购物车转换为待审批订单（单事务）"""
        applied_discounts = list(applied_discounts or [])
        try:
            result = await self._create_order_from_cart(user_id, cart_id, applied_discounts)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(
            "订单已创建 order_id=%s user_id=%s cart_id=%s subtotal=%s discount=%s grand_total=%s",
            result.order_id, user_id, cart_id, result.subtotal, result.discount_total, result.grand_total,
        )
        return result

    async def _create_order_from_cart(
        self,
        user_id: int,
        cart_id: int,
        applied_discounts: List[AppliedDiscount],
    ) -> CreateOrderResult:
        result = await self.db.execute(
            select(Cart)
            .options(selectinload(Cart.items))
            .where(Cart.id == cart_id)
            .execution_options(populate_existing=True)
        )
        cart = result.scalar_one_or_none()
        if not cart or cart.user_id != user_id:
            raise CartNotFoundError()
        if cart.state != CartState.ACTIVE:
            raise CartNotActiveError()
        if not cart.items:
            raise EmptyCartError()

        # 同一商品可能出现在多行，按商品汇总需求量
        required: Dict[int, int] = OrderedDict()
        for item in cart.items:
            required[item.product_id] = required.get(item.product_id, 0) + item.qty

        result = await self.db.execute(
            select(Product).where(Product.id.in_(list(required))).execution_options(populate_existing=True)
        )
        product_by_id = {p.id: p for p in result.scalars().all()}

        # 先校验全部商品，再做任何扣减
        for product_id, qty in required.items():
            product = product_by_id.get(product_id)
            if not product or not product.is_active:
                raise InsufficientStockError(f"商品 {product_id} 不可售")
            if product.stock is not None and product.stock < qty:
                raise InsufficientStockError(f"商品 {product_id} 库存不足")

        # 预览之后名额可能已被占满，事务内再校验一次
        await self._ensure_discounts_available(user_id, applied_discounts)

        for product_id, qty in required.items():
            if product_by_id[product_id].stock is None:
                continue
            res = await self.db.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock >= qty)
                .values(stock=Product.stock - qty)
            )
            if res.rowcount != 1:
                raise InsufficientStockError(f"商品 {product_id} 库存不足")

        subtotal = sum(item.qty * item.unit_price_snapshot for item in cart.items)
        raw_discount = sum(max(d.amount, 0) for d in applied_discounts)
        discount_total = min(raw_discount, subtotal)
        grand_total = subtotal - discount_total

        order = Order(
            user_id=user_id,
            cart_id=cart.id,
            subtotal=subtotal,
            discount_total=discount_total,
            grand_total=grand_total,
            status=OrderStatus.AWAITING_APPROVAL,
        )
        self.db.add(order)
        await self.db.flush()

        for item in cart.items:
            self.db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    qty=item.qty,
                    unit_price_snapshot=item.unit_price_snapshot,
                    line_total=item.qty * item.unit_price_snapshot,
                )
            )

        record_order_event(
            self.db,
            order.id,
            OrderCreatedPayload(
                cart_id=cart.id,
                subtotal=subtotal,
                discount_total=discount_total,
                grand_total=grand_total,
                applied_discounts=applied_discounts,
            ),
            actor_type=ActorType.SYSTEM,
        )

        # 总折扣封顶在小计时，按命中顺序分摊，使用记录之和等于实扣金额
        now = self._now()
        remaining = discount_total
        for d in applied_discounts:
            charged = min(max(d.amount, 0), remaining)
            remaining -= charged
            self.db.add(
                DiscountUsage(
                    discount_id=d.discount_id,
                    user_id=user_id,
                    order_id=order.id,
                    amount=charged,
                    used_at=now,
                )
            )

        res = await self.db.execute(
            update(Cart)
            .where(Cart.id == cart.id, Cart.state == CartState.ACTIVE)
            .values(state=CartState.SUBMITTED)
        )
        if res.rowcount != 1:
            raise CartNotActiveError()

        return CreateOrderResult(
            order_id=order.id,
            subtotal=subtotal,
            discount_total=discount_total,
            grand_total=grand_total,
        )

    async def _ensure_discounts_available(self, user_id: int, applied_discounts: List[AppliedDiscount]) -> None:
        """
        先对折扣行做一次递增写入拿到写锁（Postgres 行锁 / SQLite RESERVED 锁），
        并发结算会在此排队，计数一定能看到先提交者的使用记录。
        按 id 顺序加锁，多折扣订单之间不会互相等待成环。
        """
        if not applied_discounts:
            return
        ids = sorted({d.discount_id for d in applied_discounts})
        for discount_id in ids:
            res = await self.db.execute(
                update(Discount)
                .where(Discount.id == discount_id, Discount.is_active.is_(True))
                .values(uses_count=Discount.uses_count + 1)
            )
            if res.rowcount != 1:
                raise DiscountUnavailableError(f"折扣 {discount_id} 已失效")

        result = await self.db.execute(
            select(Discount).where(Discount.id.in_(ids)).execution_options(populate_existing=True)
        )
        discounts = {d.id: d for d in result.scalars().all()}
        for discount_id in ids:
            if await usage_cap_reached(self.db, discounts[discount_id], user_id):
                raise DiscountUnavailableError(f"折扣 {discount_id} 已达到使用上限")

    async def get_order(self, order_id: int, with_items: bool = True) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        if with_items:
            stmt = stmt.options(selectinload(Order.items), selectinload(Order.user))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def complete_order(
        self,
        order_id: int,
        actor_type: ActorType = ActorType.MANAGER,
        actor_id: Optional[int] = None,
    ) -> Order:
        """履约/配送完成：PAID -> COMPLETED"""
        try:
            await transition_order(
                self.db,
                order_id,
                [OrderStatus.PAID],
                OrderStatus.COMPLETED,
                OrderCompletedPayload(),
                actor_type=actor_type,
                actor_id=actor_id,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        order = await self.get_order(order_id)
        if order is None:
            raise OrderNotFoundError()
        logger.info("订单已完成 order_id=%s", order_id)
        return order

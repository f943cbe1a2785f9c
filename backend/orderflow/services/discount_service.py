"""
折扣引擎：根据购物车快照与可选手动码计算命中的折扣

纯计算，不写库。使用记录只在订单真正创建时落库（见 OrderService），
因此价格预览不会占用折扣名额。
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.clock import utcnow
from orderflow.core.config import settings
from orderflow.models.discount import Discount, DiscountUsage, DiscountType
from orderflow.models.order import Order
from orderflow.schemas.discount import CartContext, CartItemInput, AppliedDiscount, DiscountCalculationResult

logger = logging.getLogger(__name__)

FIRST_ORDER_RULE = "first_order"


def calculate_subtotal(items: List[CartItemInput]) -> int:
    return sum(item.qty * item.unit_price for item in items)


def calculate_total_qty(items: List[CartItemInput]) -> int:
    return sum(item.qty for item in items)


def calculate_discount_amount(discount: Discount, subtotal: int) -> int:
    """PERCENT 向下取整；FIXED 直接取 value"""
    if discount.type == DiscountType.PERCENT:
        return (subtotal * discount.value) // 100
    if discount.type == DiscountType.FIXED:
        return discount.value
    return 0


def _in_window(now: datetime):
    return and_(
        Discount.is_active.is_(True),
        or_(Discount.starts_at.is_(None), Discount.starts_at <= now),
        or_(Discount.ends_at.is_(None), Discount.ends_at >= now),
    )


async def count_discount_usage(db: AsyncSession, discount_id: int, user_id: Optional[int] = None) -> int:
    """全局或单用户的已使用次数"""
    stmt = select(func.count()).select_from(DiscountUsage).where(DiscountUsage.discount_id == discount_id)
    if user_id is not None:
        stmt = stmt.where(DiscountUsage.user_id == user_id)
    return (await db.execute(stmt)).scalar() or 0


async def usage_cap_reached(db: AsyncSession, discount: Discount, user_id: int) -> bool:
    """max_uses / per_user_limit 任一达到上限"""
    if discount.max_uses is not None:
        if await count_discount_usage(db, discount.id) >= discount.max_uses:
            return True
    if discount.per_user_limit is not None:
        if await count_discount_usage(db, discount.id, user_id) >= discount.per_user_limit:
            return True
    return False


class DiscountService:
    """折扣计算服务类"""

    def __init__(self, db: AsyncSession, now: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = now

    async def calculate_discounts(self, cart: CartContext, manual_code: Optional[str] = None) -> DiscountCalculationResult:
        """计算购物车可用折扣"""
        subtotal = calculate_subtotal(cart.items)
        total_qty = calculate_total_qty(cart.items)

        if subtotal <= 0 or total_qty <= 0:
            return DiscountCalculationResult(
                subtotal=max(subtotal, 0),
                total_discount=0,
                grand_total=max(subtotal, 0),
                applied_discounts=[],
            )

        now = self._now()

        # 自动折扣：无 code 且在有效期内
        result = await self.db.execute(
            select(Discount).where(Discount.code.is_(None), _in_window(now)).order_by(Discount.id)
        )
        applicable_auto: List[AppliedDiscount] = []
        for discount in result.scalars().all():
            if not await self._is_applicable(discount, cart, subtotal, total_qty):
                continue
            amount = calculate_discount_amount(discount, subtotal)
            if amount <= 0:
                continue
            applicable_auto.append(
                AppliedDiscount(
                    discount_id=discount.id,
                    code=None,
                    amount=amount,
                    description=discount.auto_rule or "auto discount",
                )
            )

        manual_applied: Optional[AppliedDiscount] = None
        code = (manual_code or "").strip()
        if code:
            result = await self.db.execute(select(Discount).where(Discount.code == code, _in_window(now)))
            discount = result.scalar_one_or_none()
            if discount and await self._is_applicable(discount, cart, subtotal, total_qty):
                amount = calculate_discount_amount(discount, subtotal)
                if amount > 0:
                    manual_applied = AppliedDiscount(
                        discount_id=discount.id,
                        code=discount.code,
                        amount=amount,
                        description=discount.code or "manual discount",
                    )
                    # 不可叠加的手动码直接替换全部自动折扣
                    if not discount.stackable:
                        capped = min(amount, subtotal)
                        return DiscountCalculationResult(
                            subtotal=subtotal,
                            total_discount=capped,
                            grand_total=subtotal - capped,
                            applied_discounts=[manual_applied],
                        )
            else:
                logger.info("折扣码不可用 user_id=%s code=%s", cart.user_id, code)

        applied = applicable_auto + ([manual_applied] if manual_applied else [])
        total_discount = min(sum(d.amount for d in applied), subtotal)
        return DiscountCalculationResult(
            subtotal=subtotal,
            total_discount=total_discount,
            grand_total=subtotal - total_discount,
            applied_discounts=applied,
        )

    async def _is_applicable(self, discount: Discount, cart: CartContext, subtotal: int, total_qty: int) -> bool:
        if discount.min_qty is not None and total_qty < discount.min_qty:
            return False
        if discount.min_amount is not None and subtotal < discount.min_amount:
            return False
        if await usage_cap_reached(self.db, discount, cart.user_id):
            return False

        if not discount.auto_rule:
            return True

        if discount.auto_rule == FIRST_ORDER_RULE:
            order_count = (
                await self.db.execute(
                    select(func.count()).select_from(Order).where(Order.user_id == cart.user_id)
                )
            ).scalar() or 0
            return order_count == 0

        if settings.DISCOUNT_UNKNOWN_RULE_APPLICABLE:
            return True
        logger.warning("未识别的折扣规则 %s (discount_id=%s)，按不可用处理", discount.auto_rule, discount.id)
        return False

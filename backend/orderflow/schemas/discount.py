"""
折扣计算相关Schema
"""
from pydantic import BaseModel, Field
from typing import Optional, List


class CartItemInput(BaseModel):
    """参与计价的购物车行"""
    product_id: int
    qty: int = Field(..., ge=0)
    unit_price: int = Field(..., ge=0)


class CartContext(BaseModel):
    """折扣引擎输入：购物车快照"""
    user_id: int
    items: List[CartItemInput] = []


class AppliedDiscount(BaseModel):
    """命中的折扣"""
    discount_id: int
    code: Optional[str] = None
    amount: int
    description: str


class DiscountCalculationResult(BaseModel):
    """折扣计算结果"""
    subtotal: int
    total_discount: int
    grand_total: int
    applied_discounts: List[AppliedDiscount] = []

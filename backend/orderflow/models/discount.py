"""
折扣规则与使用记录模型
"""
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from orderflow.core.database import Base


class DiscountType(str, enum.Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class Discount(Base):
    """折扣表：code 非空为手动码，否则为自动折扣（可带 auto_rule 标签）"""
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=True)
    auto_rule = Column(String(64), nullable=True)  # first_order
    type = Column(Enum(DiscountType, native_enum=False, length=16), nullable=False)
    value = Column(Integer, nullable=False)  # PERCENT: 百分比；FIXED: 最小货币单位
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    min_qty = Column(Integer, nullable=True)
    min_amount = Column(Integer, nullable=True)
    stackable = Column(Boolean, nullable=False, default=False)
    max_uses = Column(Integer, nullable=True)        # 全局上限
    per_user_limit = Column(Integer, nullable=True)  # 单用户上限
    uses_count = Column(Integer, nullable=False, default=0)  # 结算时在行锁内递增
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())


class DiscountUsage(Base):
    """折扣使用记录：每次 (折扣, 用户, 订单) 一行，只追加，既用于限额也是实扣审计"""
    __tablename__ = "discount_usages"

    id = Column(Integer, primary_key=True, index=True)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Integer, nullable=False, default=0)
    used_at = Column(DateTime, server_default=func.now())

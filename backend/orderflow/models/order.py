"""
订单模型
"""
import enum

from sqlalchemy import Column, Integer, String, BigInteger, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderflow.core.database import Base


class OrderStatus(str, enum.Enum):
    """订单状态（对外可见的字符串值）"""
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    APPROVED = "APPROVED"
    INVITE_SENT = "INVITE_SENT"
    AWAITING_RECEIPT = "AWAITING_RECEIPT"
    PAID = "PAID"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Order(Base):
    """订单表：金额均为最小货币单位整数"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="SET NULL"), nullable=True, unique=True)
    subtotal = Column(Integer, nullable=False)
    discount_total = Column(Integer, nullable=False, default=0)
    grand_total = Column(Integer, nullable=False)
    status = Column(
        Enum(OrderStatus, native_enum=False, length=32),
        nullable=False,
        default=OrderStatus.AWAITING_APPROVAL,
        index=True,
    )
    # 支付频道字段：由频道清理一并清空
    invite_link = Column(String(255), nullable=True)
    invite_sent_at = Column(DateTime, nullable=True)
    invite_expires_at = Column(DateTime, nullable=True, index=True)
    channel_message_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 关系
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
    events = relationship("OrderEvent", back_populates="order", order_by="OrderEvent.id")
    receipts = relationship("Receipt", back_populates="order", order_by="Receipt.id")


class OrderItem(Base):
    """订单明细快照：创建后不再修改，商品改价不影响历史金额"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    qty = Column(Integer, nullable=False)
    unit_price_snapshot = Column(Integer, nullable=False)
    line_total = Column(Integer, nullable=False)

    # 关系
    order = relationship("Order", back_populates="items")
    product = relationship("Product")

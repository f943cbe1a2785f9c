"""
付款凭证模型：买家提交，管理员人工审核
"""
import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderflow.core.database import Base


class ReceiptReviewStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class Receipt(Base):
    """付款凭证表"""
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    file_id = Column(String(255), nullable=False)
    caption = Column(Text, nullable=True)
    review_status = Column(
        Enum(ReceiptReviewStatus, native_enum=False, length=16),
        nullable=False,
        default=ReceiptReviewStatus.PENDING,
        index=True,
    )
    reviewed_by_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"), nullable=True)
    review_notes = Column(Text, nullable=True)
    submitted_at = Column(DateTime, server_default=func.now())

    # 关系
    order = relationship("Order", back_populates="receipts")

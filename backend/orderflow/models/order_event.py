"""
订单审计事件：只追加，不修改、不删除
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderflow.core.database import Base


class ActorType(str, enum.Enum):
    MANAGER = "manager"
    SYSTEM = "system"
    BUYER = "buyer"


class OrderEvent(Base):
    """订单事件表"""
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    actor_type = Column(
        Enum(ActorType, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    actor_id = Column(Integer, nullable=True)
    event_type = Column(String(64), nullable=False, index=True)  # order_created, invite_sent, invite_expired 等
    payload = Column(JSON, nullable=True)  # 结构见 schemas.events
    created_at = Column(DateTime, server_default=func.now())

    # 关系
    order = relationship("Order", back_populates="events")

"""
买家与管理员模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, BigInteger
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderflow.core.database import Base


class User(Base):
    """买家表（Telegram 用户）"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    tg_user_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String(64), nullable=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    phone = Column(String(32), nullable=True)
    address = Column(String(512), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())

    # 关系
    carts = relationship("Cart", back_populates="user")
    orders = relationship("Order", back_populates="user")

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        if full:
            return full
        if self.username:
            return f"@{self.username}"
        return f"#{self.id}"


class Manager(Base):
    """管理员表：审批订单、审核付款凭证"""
    __tablename__ = "managers"

    id = Column(Integer, primary_key=True, index=True)
    tg_user_id = Column(BigInteger, unique=True, nullable=False, index=True)
    role = Column(String(20), default="manager")  # owner, manager
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())

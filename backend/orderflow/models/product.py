"""
商品模型
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from sqlalchemy.sql import func
from orderflow.core.database import Base


class Product(Base):
    """商品表"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Integer, nullable=False)  # 最小货币单位
    currency = Column(String(8), nullable=False, default="IRR")
    photo_file_id = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    stock = Column(Integer, nullable=True)  # NULL 表示不跟踪库存
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

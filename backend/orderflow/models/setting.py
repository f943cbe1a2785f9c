"""
运行时设置：key/value，无记录表示使用代码默认值
"""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func
from orderflow.core.database import Base


class BotSetting(Base):
    """运行时设置表"""
    __tablename__ = "bot_settings"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

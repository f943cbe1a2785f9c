"""
延时任务：需要“稍后执行”的动作统一落库，由轮询任务执行（进程重启不丢失）
"""
import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from orderflow.core.database import Base


class ScheduledTaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


class ScheduledTask(Base):
    """延时任务表"""
    __tablename__ = "scheduled_tasks"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(64), nullable=False, index=True)  # delete_message
    payload = Column(JSON, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    run_at = Column(DateTime, nullable=False, index=True)
    status = Column(
        Enum(ScheduledTaskStatus, native_enum=False, length=16),
        nullable=False,
        default=ScheduledTaskStatus.PENDING,
        index=True,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    completed_at = Column(DateTime, nullable=True)

"""
付款凭证相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from orderflow.models.receipt import ReceiptReviewStatus


class ReceiptCreate(BaseModel):
    """买家提交凭证"""
    user_id: int
    file_id: str = Field(..., min_length=1, max_length=255)
    caption: Optional[str] = None


class ReceiptRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReceiptResponse(BaseModel):
    id: int
    order_id: int
    user_id: int
    file_id: str
    caption: Optional[str] = None
    review_status: ReceiptReviewStatus
    reviewed_by_id: Optional[int] = None
    review_notes: Optional[str] = None
    submitted_at: Optional[datetime] = None

    class Config:
        from_attributes = True

"""
Payment — イベント定義
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class PaymentRecorded(BaseModel):
    """支払い結果が記録された"""
    payment_id: UUID
    order_id: UUID
    amount: float
    currency: str
    method: str
    status: str
    timestamp: datetime


class PaymentStatusChanged(BaseModel):
    payment_id: UUID
    order_id: UUID
    from_status: str
    to_status: str
    timestamp: datetime

"""
Order — イベント定義

注文の状態変化はすべてイベントとして event_store に追記される。
イベントは過去形で命名し、不変として扱う。
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class OrderLineData(BaseModel):
    product_id: UUID
    product_name: str
    quantity: int
    price: float


class OrderCreated(BaseModel):
    """カートから注文が作成された (在庫引き当て済み)"""
    order_id: UUID
    user_id: UUID
    items: list[OrderLineData]
    total: float
    shipping_address: str
    billing_address: str
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """管理者の操作でステータスが遷移した"""
    order_id: UUID
    from_status: str
    to_status: str
    restocked: bool = False
    timestamp: datetime


class OrderCancelled(BaseModel):
    """ユーザーが注文をキャンセルした (在庫は戻し済み)"""
    order_id: UUID
    user_id: UUID
    from_status: str
    reason: str
    timestamp: datetime


class TrackingCodeAssigned(BaseModel):
    order_id: UUID
    tracking_code: str
    timestamp: datetime


class PaymentAttached(BaseModel):
    """支払い記録が注文に紐付けられた"""
    order_id: UUID
    payment_id: UUID
    timestamp: datetime

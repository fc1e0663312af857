"""
Cart — イベント定義
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class CartItemAdded(BaseModel):
    """商品がカートに追加された (既存明細への加算を含む)"""
    cart_id: UUID
    user_id: UUID
    product_id: UUID
    quantity: int
    timestamp: datetime


class CartItemUpdated(BaseModel):
    """明細の数量が上書きされた"""
    cart_id: UUID
    user_id: UUID
    product_id: UUID
    quantity: int
    timestamp: datetime


class CartItemRemoved(BaseModel):
    cart_id: UUID
    user_id: UUID
    product_id: UUID
    timestamp: datetime


class CartCleared(BaseModel):
    """全明細が削除された (注文確定時も発行される)"""
    cart_id: UUID
    user_id: UUID
    order_id: UUID | None = None
    timestamp: datetime

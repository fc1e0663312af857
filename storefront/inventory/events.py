"""
Inventory — イベント定義

在庫と商品カタログで発生した事実。過去形で命名する。
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class ProductCreated(BaseModel):
    """商品が登録された"""
    product_id: UUID
    name: str
    sku: str
    price: float
    stock: int
    timestamp: datetime


class ProductUpdated(BaseModel):
    """商品情報 (在庫数以外) が変更された"""
    product_id: UUID
    changes: dict
    timestamp: datetime


class ProductActivated(BaseModel):
    product_id: UUID
    timestamp: datetime


class ProductDeactivated(BaseModel):
    product_id: UUID
    timestamp: datetime


class ProductDeleted(BaseModel):
    product_id: UUID
    timestamp: datetime


class StockAdjusted(BaseModel):
    """在庫数が増減した (負の delta は引き当て、正の delta は戻し)"""
    product_id: UUID
    delta: int
    stock: int
    reason: str
    order_id: UUID | None = None
    timestamp: datetime

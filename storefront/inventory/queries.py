"""
Inventory — クエリハンドラ (Read 側)
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..event_store import isoformat


def product_to_dict(row) -> dict:
    return {
        "id": str(row.id),
        "name": row.name,
        "description": row.description,
        "sku": row.sku,
        "category": row.category,
        "price": float(row.price),
        "stock": row.stock,
        "is_active": bool(row.is_active),
        "created_at": isoformat(row.created_at),
        "updated_at": isoformat(row.updated_at),
    }


async def get_product(session: AsyncSession, product_id: UUID) -> dict | None:
    """商品を 1 件取得する。"""
    result = await session.execute(
        text("SELECT * FROM products WHERE id = :id"),
        {"id": str(product_id)},
    )
    row = result.fetchone()
    if not row:
        return None
    return product_to_dict(row)


async def get_stock_movements(session: AsyncSession, product_id: UUID) -> list[dict]:
    """商品の在庫増減履歴を古い順に返す (監査用)。"""
    result = await session.execute(
        text("""
            SELECT delta, stock_after, reason, order_id, created_at
            FROM stock_movements
            WHERE product_id = :id
            ORDER BY created_at ASC
        """),
        {"id": str(product_id)},
    )
    return [
        {
            "delta": row.delta,
            "stock_after": row.stock_after,
            "reason": row.reason,
            "order_id": str(row.order_id) if row.order_id else None,
            "created_at": isoformat(row.created_at),
        }
        for row in result.fetchall()
    ]

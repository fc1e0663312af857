"""
Order — クエリハンドラ (Read 側)

注文はリードモデル (orders / order_items) から読む。
履歴が必要なときは event_store.load_events() を使う。
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..event_store import isoformat
from .lifecycle import can_be_cancelled, can_be_refunded


async def _load_items(session: AsyncSession, order_id) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT product_id, product_name, quantity, price
            FROM order_items
            WHERE order_id = :order_id
            ORDER BY product_name ASC
        """),
        {"order_id": str(order_id)},
    )
    return [
        {
            "product_id": str(row.product_id),
            "product_name": row.product_name,
            "quantity": row.quantity,
            "price": float(row.price),
            "subtotal": round(float(row.price) * row.quantity, 2),
        }
        for row in result.fetchall()
    ]


async def _order_to_dict(session: AsyncSession, row) -> dict:
    return {
        "id": str(row.id),
        "user_id": str(row.user_id),
        "status": row.status,
        "items": await _load_items(session, row.id),
        "total": float(row.total),
        "shipping_address": row.shipping_address,
        "billing_address": row.billing_address,
        "tracking_code": row.tracking_code,
        "payment_id": str(row.payment_id) if row.payment_id else None,
        "can_be_cancelled": can_be_cancelled(row.status),
        "can_be_refunded": can_be_refunded(row.status),
        "version": row.version,
        "created_at": isoformat(row.created_at),
        "updated_at": isoformat(row.updated_at),
    }


async def get_order(session: AsyncSession, order_id: UUID) -> dict | None:
    """リードモデルから注文を取得する。"""
    result = await session.execute(
        text("SELECT * FROM orders WHERE id = :id"),
        {"id": str(order_id)},
    )
    row = result.fetchone()
    if not row:
        return None
    return await _order_to_dict(session, row)


async def list_orders(session: AsyncSession, user_id: UUID) -> list[dict]:
    """ユーザーの注文を新しい順に返す。"""
    result = await session.execute(
        text("SELECT * FROM orders WHERE user_id = :user_id ORDER BY created_at DESC"),
        {"user_id": str(user_id)},
    )
    return [await _order_to_dict(session, row) for row in result.fetchall()]

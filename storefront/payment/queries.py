"""
Payment — クエリハンドラ (Read 側)
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import Payment


async def load_payment(session: AsyncSession, payment_id: UUID) -> Payment | None:
    result = await session.execute(
        text("SELECT * FROM payments WHERE id = :id"),
        {"id": str(payment_id)},
    )
    row = result.fetchone()
    return Payment.from_row(row) if row else None


async def get_payment(session: AsyncSession, payment_id: UUID) -> dict | None:
    payment = await load_payment(session, payment_id)
    return payment.to_dict() if payment else None


async def get_payment_by_order(session: AsyncSession, order_id: UUID) -> dict | None:
    """注文に紐付いた最新の支払い記録を返す。"""
    result = await session.execute(
        text("""
            SELECT * FROM payments
            WHERE order_id = :order_id
            ORDER BY created_at DESC
            LIMIT 1
        """),
        {"order_id": str(order_id)},
    )
    row = result.fetchone()
    return Payment.from_row(row).to_dict() if row else None

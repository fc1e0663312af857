"""
Cart — クエリハンドラ (Read 側)

明細には追加時の単価に加えて、表示用に現在の商品名と価格を付ける。
合計は常に追加時の単価で計算する。
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import Cart, CartLine


async def load_cart(session: AsyncSession, user_id: UUID) -> Cart | None:
    """ユーザーのカートを明細ごと読み込む。カートが無ければ None。"""
    result = await session.execute(
        text("SELECT id FROM carts WHERE user_id = :user_id"),
        {"user_id": str(user_id)},
    )
    row = result.fetchone()
    if not row:
        return None

    cart_id = UUID(str(row.id))
    result = await session.execute(
        text("""
            SELECT ci.product_id, ci.quantity, ci.price,
                   p.name AS product_name, p.price AS current_price
            FROM cart_items ci
            LEFT JOIN products p ON p.id = ci.product_id
            WHERE ci.cart_id = :cart_id
            ORDER BY ci.created_at ASC
        """),
        {"cart_id": str(cart_id)},
    )
    lines = [
        CartLine(
            product_id=UUID(str(r.product_id)),
            quantity=r.quantity,
            price=float(r.price),
            product_name=r.product_name or "",
            current_price=float(r.current_price) if r.current_price is not None else None,
        )
        for r in result.fetchall()
    ]
    return Cart(id=cart_id, user_id=user_id, lines=lines)


async def get_cart(session: AsyncSession, user_id: UUID) -> dict | None:
    cart = await load_cart(session, user_id)
    if cart is None:
        return None
    return cart.to_dict()

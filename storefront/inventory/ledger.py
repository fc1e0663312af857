"""
Inventory — 在庫台帳 (Inventory Ledger)

在庫数の増減はすべて adjust() を通る。

引き当て (delta < 0) は 1 本の条件付き UPDATE で行う:
    UPDATE products SET stock = stock + :delta
    WHERE id = :id AND is_active AND stock + :delta >= 0

読み取り → 計算 → 書き込み の 3 段階に分けないので、
同じ商品の最後の 1 個を 2 つのリクエストが同時に取り合っても
片方しか成功しない。products.stock の CHECK 制約が最後の砦になる。

adjust() はコミットしない。注文作成・キャンセルは
自分のトランザクションの中で複数回呼び出し、まとめてコミットする。
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InsufficientStock, ProductInactive, ProductNotFound, ValidationFailed


async def adjust(
    session: AsyncSession,
    product_id: UUID,
    delta: int,
    *,
    reason: str,
    order_id: UUID | None = None,
) -> int:
    """
    在庫数を delta だけ増減し、変更後の在庫数を返す。

    Raises:
        ValidationFailed: delta が 0
        ProductNotFound: 商品が存在しない
        ProductInactive: 非公開商品からの引き当て
        InsufficientStock: 引き当て後の在庫が負になる
    """
    if delta == 0:
        raise ValidationFailed("Stock adjustment must be non-zero")

    now = datetime.now(timezone.utc)
    if delta < 0:
        result = await session.execute(
            text("""
                UPDATE products
                SET stock = stock + :delta, updated_at = :now
                WHERE id = :id AND is_active AND stock + :delta >= 0
            """),
            {"delta": delta, "now": now, "id": str(product_id)},
        )
    else:
        # 戻しは非公開商品にも行える
        result = await session.execute(
            text("""
                UPDATE products
                SET stock = stock + :delta, updated_at = :now
                WHERE id = :id
            """),
            {"delta": delta, "now": now, "id": str(product_id)},
        )

    if result.rowcount == 0:
        await _raise_rejection(session, product_id, delta)

    row = (await session.execute(
        text("SELECT stock FROM products WHERE id = :id"),
        {"id": str(product_id)},
    )).fetchone()
    stock_after = row.stock

    await session.execute(
        text("""
            INSERT INTO stock_movements
                (id, product_id, delta, stock_after, reason, order_id, created_at)
            VALUES
                (:id, :product_id, :delta, :stock_after, :reason, :order_id, :now)
        """),
        {
            "id": str(uuid4()),
            "product_id": str(product_id),
            "delta": delta,
            "stock_after": stock_after,
            "reason": reason,
            "order_id": str(order_id) if order_id else None,
            "now": now,
        },
    )
    return stock_after


async def _raise_rejection(session: AsyncSession, product_id: UUID, delta: int) -> None:
    """UPDATE が 0 行だった理由を調べて、対応する例外を送出する。"""
    row = (await session.execute(
        text("SELECT name, stock, is_active FROM products WHERE id = :id"),
        {"id": str(product_id)},
    )).fetchone()
    if not row:
        raise ProductNotFound()
    if not row.is_active:
        raise ProductInactive(row.name)
    raise InsufficientStock(row.name, requested=-delta, available=row.stock)

"""
Cart — コマンドハンドラ (Write 側)

カートへの追加時の在庫チェックは「今この数量を満たせるか」のヒントに過ぎない。
在庫を実際に減らすのは注文作成時 (order.commands.create_order) だけ。
"""

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    CartItemNotFound,
    CartNotFound,
    InsufficientStock,
    ProductInactive,
    ProductNotFound,
    ValidationFailed,
)
from ..messaging import CART_EVENTS, publish_event
from . import events, queries
from .aggregate import Cart

logger = logging.getLogger(__name__)


async def _ensure_cart(session: AsyncSession, user_id: UUID) -> UUID:
    """カートが無ければ作成して、カート ID を返す (コミットしない)。"""
    now = datetime.now(timezone.utc)
    await session.execute(
        text("""
            INSERT INTO carts (id, user_id, created_at, updated_at)
            VALUES (:id, :user_id, :now, :now)
            ON CONFLICT (user_id) DO NOTHING
        """),
        {"id": str(uuid4()), "user_id": str(user_id), "now": now},
    )
    result = await session.execute(
        text("SELECT id FROM carts WHERE user_id = :user_id"),
        {"user_id": str(user_id)},
    )
    return UUID(str(result.fetchone().id))


async def _require_cart_id(session: AsyncSession, user_id: UUID) -> UUID:
    result = await session.execute(
        text("SELECT id FROM carts WHERE user_id = :user_id"),
        {"user_id": str(user_id)},
    )
    row = result.fetchone()
    if not row:
        raise CartNotFound()
    return UUID(str(row.id))


async def _check_availability(session: AsyncSession, product_id: UUID, quantity: int):
    """商品が quantity 個を満たせるか確認し、商品行を返す。"""
    result = await session.execute(
        text("SELECT id, name, price, stock, is_active FROM products WHERE id = :id"),
        {"id": str(product_id)},
    )
    product = result.fetchone()
    if not product:
        raise ProductNotFound()
    if not product.is_active:
        raise ProductInactive(product.name)
    if product.stock < quantity:
        raise InsufficientStock(product.name, requested=quantity, available=product.stock)
    return product


async def get_or_create_cart(session: AsyncSession, user_id: UUID) -> Cart:
    """ユーザーのカートを返す。無ければ空のカートを作る (冪等)。"""
    await _ensure_cart(session, user_id)
    await session.commit()
    return await queries.load_cart(session, user_id)


async def add_item(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: UUID,
    product_id: UUID,
    quantity: int,
) -> Cart:
    """
    カート追加コマンド

    同じ商品が既にあれば数量を加算する。単価は最初に追加したときのまま。
    在庫チェックは 既存数量 + 追加数量 に対して行う。
    """
    if quantity <= 0:
        raise ValidationFailed("Quantity must be greater than zero")

    existing = await session.execute(
        text("""
            SELECT ci.quantity
            FROM cart_items ci
            JOIN carts c ON c.id = ci.cart_id
            WHERE c.user_id = :user_id AND ci.product_id = :product_id
        """),
        {"user_id": str(user_id), "product_id": str(product_id)},
    )
    row = existing.fetchone()
    existing_quantity = row.quantity if row else 0

    try:
        product = await _check_availability(session, product_id, existing_quantity + quantity)
    except InsufficientStock as exc:
        logger.warning("Add to cart rejected for user %s: %s", user_id, exc.message)
        raise

    now = datetime.now(timezone.utc)
    try:
        cart_id = await _ensure_cart(session, user_id)
        # 既存明細への加算は 1 文の upsert で行う。price は更新しない
        await session.execute(
            text("""
                INSERT INTO cart_items
                    (id, cart_id, product_id, quantity, price, created_at, updated_at)
                VALUES
                    (:id, :cart_id, :product_id, :quantity, :price, :now, :now)
                ON CONFLICT (cart_id, product_id) DO UPDATE
                SET quantity = cart_items.quantity + excluded.quantity,
                    updated_at = excluded.updated_at
            """),
            {
                "id": str(uuid4()),
                "cart_id": str(cart_id),
                "product_id": str(product_id),
                "quantity": quantity,
                "price": float(product.price),
                "now": now,
            },
        )
        await _touch(session, cart_id, now)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    event = events.CartItemAdded(
        cart_id=cart_id, user_id=user_id, product_id=product_id, quantity=quantity, timestamp=now
    )
    await publish_event(redis, CART_EVENTS, "CartItemAdded", event.model_dump(mode="json"))
    logger.info("User %s added %s x %s to cart %s", user_id, quantity, product_id, cart_id)

    return await queries.load_cart(session, user_id)


async def update_item(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: UUID,
    product_id: UUID,
    quantity: int,
) -> Cart:
    """
    明細の数量上書きコマンド

    quantity <= 0 は明細の削除として扱う。加算はしない。
    """
    if quantity <= 0:
        return await remove_item(session, redis, user_id, product_id)

    cart_id = await _require_cart_id(session, user_id)
    await _check_availability(session, product_id, quantity)

    now = datetime.now(timezone.utc)
    try:
        result = await session.execute(
            text("""
                UPDATE cart_items
                SET quantity = :quantity, updated_at = :now
                WHERE cart_id = :cart_id AND product_id = :product_id
            """),
            {
                "quantity": quantity,
                "now": now,
                "cart_id": str(cart_id),
                "product_id": str(product_id),
            },
        )
        if result.rowcount == 0:
            raise CartItemNotFound()
        await _touch(session, cart_id, now)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    event = events.CartItemUpdated(
        cart_id=cart_id, user_id=user_id, product_id=product_id, quantity=quantity, timestamp=now
    )
    await publish_event(redis, CART_EVENTS, "CartItemUpdated", event.model_dump(mode="json"))
    logger.info("User %s set quantity of %s to %s in cart %s", user_id, product_id, quantity, cart_id)

    return await queries.load_cart(session, user_id)


async def remove_item(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: UUID,
    product_id: UUID,
) -> Cart:
    """明細削除コマンド。該当明細が無くてもエラーにしない。"""
    cart_id = await _require_cart_id(session, user_id)

    now = datetime.now(timezone.utc)
    result = await session.execute(
        text("DELETE FROM cart_items WHERE cart_id = :cart_id AND product_id = :product_id"),
        {"cart_id": str(cart_id), "product_id": str(product_id)},
    )
    removed = result.rowcount
    if removed:
        await _touch(session, cart_id, now)
    await session.commit()

    if removed:
        event = events.CartItemRemoved(
            cart_id=cart_id, user_id=user_id, product_id=product_id, timestamp=now
        )
        await publish_event(redis, CART_EVENTS, "CartItemRemoved", event.model_dump(mode="json"))
        logger.info("User %s removed %s from cart %s", user_id, product_id, cart_id)

    return await queries.load_cart(session, user_id)


async def clear_cart(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: UUID,
) -> Cart:
    """全明細削除コマンド。カート自体は残る。"""
    cart_id = await _require_cart_id(session, user_id)

    now = datetime.now(timezone.utc)
    await session.execute(
        text("DELETE FROM cart_items WHERE cart_id = :cart_id"),
        {"cart_id": str(cart_id)},
    )
    await _touch(session, cart_id, now)
    await session.commit()

    event = events.CartCleared(cart_id=cart_id, user_id=user_id, timestamp=now)
    await publish_event(redis, CART_EVENTS, "CartCleared", event.model_dump(mode="json"))
    logger.info("User %s cleared cart %s", user_id, cart_id)

    return await queries.load_cart(session, user_id)


async def _touch(session: AsyncSession, cart_id: UUID, now: datetime) -> None:
    await session.execute(
        text("UPDATE carts SET updated_at = :now WHERE id = :id"),
        {"now": now, "id": str(cart_id)},
    )

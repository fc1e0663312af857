"""
Inventory — コマンドハンドラ (Write 側)

商品カタログの管理と、運用者による在庫の手動調整。
注文に伴う引き当て・戻しは order.commands が ledger.adjust() を直接呼ぶ。
"""

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DuplicateSku, ProductInUse, ProductNotFound, StoreError, ValidationFailed
from ..messaging import INVENTORY_EVENTS, publish_event
from ..order.lifecycle import VALID_TRANSITIONS, OrderStatus
from . import events, ledger, queries

logger = logging.getLogger(__name__)

# キャンセルで在庫が戻る可能性のある注文ステータス
RESTOCKABLE_STATUSES = tuple(
    status.value for status, targets in VALID_TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)


async def create_product(
    session: AsyncSession,
    redis: aioredis.Redis,
    name: str,
    sku: str,
    price: float,
    stock: int = 0,
    description: str = "",
    category: str = "",
    is_active: bool = True,
) -> dict:
    """
    商品登録コマンド

    SKU は一意。在庫数の初期値もここで指定できる。
    """
    if not name.strip() or not sku.strip():
        raise ValidationFailed("Product name and SKU are required")
    if price < 0:
        raise ValidationFailed("Price must not be negative")
    if stock < 0:
        raise ValidationFailed("Stock must not be negative")

    existing = await session.execute(
        text("SELECT id FROM products WHERE sku = :sku"), {"sku": sku}
    )
    if existing.fetchone():
        raise DuplicateSku(f"Product with SKU {sku} already exists")

    product_id = uuid4()
    now = datetime.now(timezone.utc)
    try:
        await session.execute(
            text("""
                INSERT INTO products
                    (id, name, description, sku, category, price, stock, is_active, created_at, updated_at)
                VALUES
                    (:id, :name, :description, :sku, :category, :price, :stock, :is_active, :now, :now)
            """),
            {
                "id": str(product_id),
                "name": name,
                "description": description,
                "sku": sku,
                "category": category,
                "price": price,
                "stock": stock,
                "is_active": is_active,
                "now": now,
            },
        )
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateSku(f"Product with SKU {sku} already exists") from exc

    event = events.ProductCreated(
        product_id=product_id, name=name, sku=sku, price=price, stock=stock, timestamp=now
    )
    await publish_event(redis, INVENTORY_EVENTS, "ProductCreated", event.model_dump(mode="json"))
    logger.info("Product %s created (sku=%s, stock=%s)", product_id, sku, stock)

    return await queries.get_product(session, product_id)


async def update_product(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: UUID,
    *,
    name: str | None = None,
    description: str | None = None,
    price: float | None = None,
    category: str | None = None,
) -> dict:
    """
    商品情報の更新コマンド

    在庫数はここでは変更できない (adjust_stock を使う)。
    カートに入っている明細の価格も変わらない。
    """
    changes = {
        key: value
        for key, value in {
            "name": name,
            "description": description,
            "price": price,
            "category": category,
        }.items()
        if value is not None
    }
    if "name" in changes and not changes["name"].strip():
        raise ValidationFailed("Product name must not be blank")
    if "price" in changes and changes["price"] < 0:
        raise ValidationFailed("Price must not be negative")

    if not await queries.get_product(session, product_id):
        raise ProductNotFound()
    if not changes:
        return await queries.get_product(session, product_id)

    now = datetime.now(timezone.utc)
    assignments = ", ".join(f"{key} = :{key}" for key in changes)
    await session.execute(
        text(f"UPDATE products SET {assignments}, updated_at = :now WHERE id = :id"),
        {**changes, "now": now, "id": str(product_id)},
    )
    await session.commit()

    event = events.ProductUpdated(product_id=product_id, changes=changes, timestamp=now)
    await publish_event(redis, INVENTORY_EVENTS, "ProductUpdated", event.model_dump(mode="json"))
    logger.info("Product %s updated: %s", product_id, sorted(changes))

    return await queries.get_product(session, product_id)


async def set_product_active(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: UUID,
    active: bool,
) -> dict:
    """
    商品の公開・非公開を切り替える。

    非公開の商品はカートに追加できず、注文時の引き当ても失敗する。
    """
    now = datetime.now(timezone.utc)
    result = await session.execute(
        text("UPDATE products SET is_active = :active, updated_at = :now WHERE id = :id"),
        {"active": active, "now": now, "id": str(product_id)},
    )
    if result.rowcount == 0:
        await session.rollback()
        raise ProductNotFound()
    await session.commit()

    if active:
        event_type = "ProductActivated"
        event = events.ProductActivated(product_id=product_id, timestamp=now)
    else:
        event_type = "ProductDeactivated"
        event = events.ProductDeactivated(product_id=product_id, timestamp=now)
    await publish_event(redis, INVENTORY_EVENTS, event_type, event.model_dump(mode="json"))
    logger.info("Product %s %s", product_id, "activated" if active else "deactivated")

    return await queries.get_product(session, product_id)


async def delete_product(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: UUID,
) -> None:
    """
    商品削除コマンド

    カートに残っている明細も一緒に削除する。
    キャンセルで在庫を戻す可能性がある注文が参照していれば ProductInUse。
    完了した注文の明細は商品名のスナップショットを持っているので影響しない。
    """
    now = datetime.now(timezone.utc)
    try:
        placeholders = ", ".join(f":s{i}" for i in range(len(RESTOCKABLE_STATUSES)))
        open_order = await session.execute(
            text(f"""
                SELECT 1
                FROM order_items oi
                JOIN orders o ON o.id = oi.order_id
                WHERE oi.product_id = :id AND o.status IN ({placeholders})
                LIMIT 1
            """),
            {"id": str(product_id), **{f"s{i}": s for i, s in enumerate(RESTOCKABLE_STATUSES)}},
        )
        if open_order.fetchone():
            raise ProductInUse()
        await session.execute(
            text("DELETE FROM cart_items WHERE product_id = :id"),
            {"id": str(product_id)},
        )
        result = await session.execute(
            text("DELETE FROM products WHERE id = :id"),
            {"id": str(product_id)},
        )
        if result.rowcount == 0:
            raise ProductNotFound()
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    event = events.ProductDeleted(product_id=product_id, timestamp=now)
    await publish_event(redis, INVENTORY_EVENTS, "ProductDeleted", event.model_dump(mode="json"))
    logger.info("Product %s deleted", product_id)


async def adjust_stock(
    session: AsyncSession,
    redis: aioredis.Redis,
    product_id: UUID,
    delta: int,
    reason: str = "manual adjustment",
) -> dict:
    """
    在庫の手動調整コマンド (入荷・棚卸し差異など)

    ledger.adjust() と同じ規則に従い、在庫が負になる調整は拒否する。
    """
    try:
        stock = await ledger.adjust(session, product_id, delta, reason=reason)
        await session.commit()
    except StoreError as exc:
        await session.rollback()
        logger.warning("Stock adjustment of product %s rejected: %s", product_id, exc.message)
        raise
    except Exception:
        await session.rollback()
        raise

    event = events.StockAdjusted(
        product_id=product_id,
        delta=delta,
        stock=stock,
        reason=reason,
        timestamp=datetime.now(timezone.utc),
    )
    await publish_event(redis, INVENTORY_EVENTS, "StockAdjusted", event.model_dump(mode="json"))
    logger.info("Stock of product %s adjusted by %s to %s (%s)", product_id, delta, stock, reason)

    return {"product_id": str(product_id), "stock": stock}

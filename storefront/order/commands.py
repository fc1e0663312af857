"""
Order — コマンドハンドラ (Write 側)

注文作成とキャンセルは、注文の書き込み・在庫の増減・カートのクリアを
1 つの DB トランザクションで行う。途中で失敗すれば全体をロールバックするので、
「注文はあるのに在庫が減っていない」といった中途半端な状態は残らない。

Redis へのイベント発行はコミット後に行う。
"""

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .. import event_store
from ..cart import events as cart_events
from ..errors import (
    CartEmpty,
    CartNotFound,
    ConcurrentModification,
    InsufficientStock,
    InvalidTransition,
    OrderNotCancellable,
    OrderNotFound,
    ProductInactive,
    ProductNotFound,
    StockRestoreFailed,
    StockUpdateFailed,
    StoreError,
    Unauthorized,
    ValidationFailed,
)
from ..inventory import events as inventory_events
from ..inventory import ledger
from ..messaging import CART_EVENTS, INVENTORY_EVENTS, ORDER_EVENTS, publish_event
from . import events
from .aggregate import OrderAggregate, OrderLine
from .lifecycle import OrderStatus, can_be_cancelled, is_valid_transition

logger = logging.getLogger(__name__)

AGGREGATE_TYPE = "Order"


async def load_order(session: AsyncSession, order_id: UUID) -> OrderAggregate:
    """イベントから注文集約を再構築する。イベントが無ければ OrderNotFound。"""
    agg = OrderAggregate.from_events(await event_store.load_events(session, order_id))
    if not agg.exists:
        raise OrderNotFound()
    return agg


# ── 注文作成 ─────────────────────────────────────


async def create_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: UUID,
    shipping_address: str,
    billing_address: str,
) -> OrderAggregate:
    """
    注文作成コマンド

    1. カートを読み込む (無ければ CartNotFound、空なら CartEmpty)
    2. 全明細の商品を引き直し、在庫を確認する (ここまで書き込みなし)
    3. 明細のスナップショットと合計金額を作る
    4. OrderCreated をイベントストアに追記し、リードモデルに書き込む
    5. 明細ごとに在庫を引き当てる
    6. 読み込んだカート明細を削除する (途中で変更されていれば ConcurrentModification)
    7. 4〜6 をまとめてコミットし、イベントを発行する
    """
    if not shipping_address.strip() or not billing_address.strip():
        raise ValidationFailed("Shipping and billing addresses are required")

    result = await session.execute(
        text("SELECT id FROM carts WHERE user_id = :user_id"),
        {"user_id": str(user_id)},
    )
    cart = result.fetchone()
    if not cart:
        raise CartNotFound()
    cart_id = UUID(str(cart.id))

    result = await session.execute(
        text("""
            SELECT ci.id AS line_id, ci.product_id, ci.quantity, ci.price,
                   p.name, p.stock, p.is_active
            FROM cart_items ci
            LEFT JOIN products p ON p.id = ci.product_id
            WHERE ci.cart_id = :cart_id
            ORDER BY ci.created_at ASC
        """),
        {"cart_id": str(cart_id)},
    )
    rows = result.fetchall()
    if not rows:
        raise CartEmpty()

    try:
        for row in rows:
            if row.name is None:
                raise ProductNotFound()
            if not row.is_active:
                raise ProductInactive(row.name)
            if row.stock < row.quantity:
                raise InsufficientStock(row.name, requested=row.quantity, available=row.stock)
    except StoreError as exc:
        logger.warning("Order rejected for user %s: %s", user_id, exc.message)
        raise

    lines = tuple(
        OrderLine(
            product_id=UUID(str(row.product_id)),
            product_name=row.name,
            quantity=row.quantity,
            price=float(row.price),
        )
        for row in rows
    )
    total = round(sum(line.price * line.quantity for line in lines), 2)

    order_id = uuid4()
    now = datetime.now(timezone.utc)
    event = events.OrderCreated(
        order_id=order_id,
        user_id=user_id,
        items=[
            events.OrderLineData(
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                price=line.price,
            )
            for line in lines
        ],
        total=total,
        shipping_address=shipping_address,
        billing_address=billing_address,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")

    stock_after: dict[UUID, int] = {}
    try:
        version = await event_store.append_event(
            session, order_id, AGGREGATE_TYPE, "OrderCreated", event_data, 0
        )

        await session.execute(
            text("""
                INSERT INTO orders
                    (id, user_id, status, total, shipping_address, billing_address,
                     tracking_code, payment_id, version, created_at, updated_at)
                VALUES
                    (:id, :user_id, :status, :total, :shipping, :billing,
                     '', NULL, :version, :now, :now)
            """),
            {
                "id": str(order_id),
                "user_id": str(user_id),
                "status": OrderStatus.PENDING.value,
                "total": total,
                "shipping": shipping_address,
                "billing": billing_address,
                "version": version,
                "now": now,
            },
        )
        for line in lines:
            await session.execute(
                text("""
                    INSERT INTO order_items
                        (id, order_id, product_id, product_name, quantity, price)
                    VALUES
                        (:id, :order_id, :product_id, :product_name, :quantity, :price)
                """),
                {
                    "id": str(uuid4()),
                    "order_id": str(order_id),
                    "product_id": str(line.product_id),
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "price": line.price,
                },
            )

        for line in lines:
            try:
                stock_after[line.product_id] = await ledger.adjust(
                    session, line.product_id, -line.quantity,
                    reason="order placed", order_id=order_id,
                )
            except StoreError as exc:
                raise StockUpdateFailed(line.product_name) from exc

        # 読み込んだ明細だけを、読み込んだときの数量で削除する。
        # 後から追加された明細はカートに残り、数量が変わった明細や
        # 他の注文で消された明細があれば ConcurrentModification
        for row in rows:
            deleted = await session.execute(
                text("""
                    DELETE FROM cart_items
                    WHERE id = :id AND quantity = :quantity
                """),
                {"id": str(row.line_id), "quantity": row.quantity},
            )
            if deleted.rowcount != 1:
                raise ConcurrentModification(
                    f"Cart of user {user_id} changed during checkout, retry the request"
                )
        await session.execute(
            text("UPDATE carts SET updated_at = :now WHERE id = :id"),
            {"now": now, "id": str(cart_id)},
        )
        await session.commit()
    except StoreError as exc:
        await session.rollback()
        logger.warning("Order creation for user %s rolled back: %s", user_id, exc.message)
        raise
    except Exception:
        await session.rollback()
        raise

    await publish_event(redis, ORDER_EVENTS, "OrderCreated", event_data)
    for line in lines:
        await _publish_stock_adjusted(
            redis, line.product_id, -line.quantity, stock_after[line.product_id],
            "order placed", order_id, now,
        )
    cleared = cart_events.CartCleared(cart_id=cart_id, user_id=user_id, order_id=order_id, timestamp=now)
    await publish_event(redis, CART_EVENTS, "CartCleared", cleared.model_dump(mode="json"))
    logger.info("Order %s created for user %s (%s lines, total=%.2f)", order_id, user_id, len(lines), total)

    agg = OrderAggregate()
    agg.apply_order_created(event_data)
    agg.version = version
    return agg


# ── ライフサイクル ────────────────────────────────


async def update_status(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: UUID,
    new_status: str,
) -> OrderAggregate:
    """
    ステータス更新コマンド (管理者用)

    遷移表 (lifecycle.VALID_TRANSITIONS) にない遷移は InvalidTransition。
    cancelled への遷移では cancel_order と同じく在庫を戻す。
    返金 (refunded) では在庫は戻さない。
    """
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationFailed(f"Unknown order status: {new_status}") from None

    agg = await load_order(session, order_id)
    current = agg.status
    if not is_valid_transition(current, target):
        logger.warning("Order %s: rejected transition %s -> %s", order_id, current.value, target.value)
        raise InvalidTransition(current.value, target.value)

    now = datetime.now(timezone.utc)
    restock = target == OrderStatus.CANCELLED
    event = events.OrderStatusChanged(
        order_id=order_id,
        from_status=current.value,
        to_status=target.value,
        restocked=restock,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")

    stock_after: dict[UUID, int] = {}
    try:
        if restock:
            stock_after = await _restock(session, agg, "order cancelled by admin")
        version = await event_store.append_event(
            session, order_id, AGGREGATE_TYPE, "OrderStatusChanged", event_data, agg.version
        )
        await _update_read_model(
            session, order_id, agg.version, version, now,
            expected_status=current, status=target.value,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await publish_event(redis, ORDER_EVENTS, "OrderStatusChanged", event_data)
    if restock:
        for line in agg.lines:
            await _publish_stock_adjusted(
                redis, line.product_id, line.quantity, stock_after[line.product_id],
                "order cancelled by admin", order_id, now,
            )
    logger.info("Order %s: %s -> %s", order_id, current.value, target.value)

    agg.apply_order_status_changed(event_data)
    agg.version = version
    return agg


async def cancel_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: UUID,
    order_id: UUID,
    reason: str = "",
) -> OrderAggregate:
    """
    注文キャンセルコマンド (ユーザー用)

    自分の注文で、かつ pending / paid のときだけキャンセルできる。
    全明細の在庫を戻してからステータスを cancelled にする。
    在庫の戻しに 1 件でも失敗したらステータスは変えない。
    """
    agg = await load_order(session, order_id)
    if agg.user_id != user_id:
        logger.warning("User %s tried to cancel order %s owned by another user", user_id, order_id)
        raise Unauthorized()
    current = agg.status
    if not can_be_cancelled(current):
        logger.warning("Order %s cannot be cancelled in status %s", order_id, current.value)
        raise OrderNotCancellable(current.value)

    now = datetime.now(timezone.utc)
    event = events.OrderCancelled(
        order_id=order_id,
        user_id=user_id,
        from_status=current.value,
        reason=reason,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")

    try:
        stock_after = await _restock(session, agg, "order cancelled")
        version = await event_store.append_event(
            session, order_id, AGGREGATE_TYPE, "OrderCancelled", event_data, agg.version
        )
        await _update_read_model(
            session, order_id, agg.version, version, now,
            expected_status=current, status=OrderStatus.CANCELLED.value,
        )
        await session.commit()
    except StoreError as exc:
        await session.rollback()
        logger.warning("Cancellation of order %s rolled back: %s", order_id, exc.message)
        raise
    except Exception:
        await session.rollback()
        raise

    await publish_event(redis, ORDER_EVENTS, "OrderCancelled", event_data)
    for line in agg.lines:
        await _publish_stock_adjusted(
            redis, line.product_id, line.quantity, stock_after[line.product_id],
            "order cancelled", order_id, now,
        )
    logger.info("Order %s cancelled by user %s", order_id, user_id)

    agg.apply_order_cancelled(event_data)
    agg.version = version
    return agg


# ── 付帯情報 ─────────────────────────────────────


async def assign_tracking_code(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: UUID,
    tracking_code: str,
) -> OrderAggregate:
    """配送追跡コードを設定する。ステータスと明細は変わらない。"""
    tracking_code = tracking_code.strip()
    if not tracking_code:
        raise ValidationFailed("Tracking code must not be blank")

    agg = await load_order(session, order_id)
    now = datetime.now(timezone.utc)
    event = events.TrackingCodeAssigned(order_id=order_id, tracking_code=tracking_code, timestamp=now)
    event_data = event.model_dump(mode="json")

    try:
        version = await event_store.append_event(
            session, order_id, AGGREGATE_TYPE, "TrackingCodeAssigned", event_data, agg.version
        )
        await _update_read_model(
            session, order_id, agg.version, version, now, tracking_code=tracking_code
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await publish_event(redis, ORDER_EVENTS, "TrackingCodeAssigned", event_data)
    logger.info("Order %s: tracking code set to %s", order_id, tracking_code)

    agg.apply_tracking_code_assigned(event_data)
    agg.version = version
    return agg


async def attach_payment(
    session: AsyncSession,
    order_id: UUID,
    payment_id: UUID,
) -> OrderAggregate:
    """
    支払い記録を注文に紐付ける (payment.commands から呼ばれる)。

    呼び出し側のトランザクションで実行し、ここではコミットしない。
    """
    agg = await load_order(session, order_id)
    now = datetime.now(timezone.utc)
    event = events.PaymentAttached(order_id=order_id, payment_id=payment_id, timestamp=now)
    event_data = event.model_dump(mode="json")

    version = await event_store.append_event(
        session, order_id, AGGREGATE_TYPE, "PaymentAttached", event_data, agg.version
    )
    await _update_read_model(
        session, order_id, agg.version, version, now, payment_id=str(payment_id)
    )

    agg.apply_payment_attached(event_data)
    agg.version = version
    return agg


# ── 内部ヘルパー ─────────────────────────────────


async def _restock(session: AsyncSession, agg: OrderAggregate, reason: str) -> dict[UUID, int]:
    """全明細の数量を在庫に戻す。1 件でも失敗すれば StockRestoreFailed。"""
    stock_after: dict[UUID, int] = {}
    for line in agg.lines:
        try:
            stock_after[line.product_id] = await ledger.adjust(
                session, line.product_id, line.quantity, reason=reason, order_id=agg.id
            )
        except StoreError as exc:
            raise StockRestoreFailed(line.product_name) from exc
    return stock_after


async def _update_read_model(
    session: AsyncSession,
    order_id: UUID,
    expected_version: int,
    new_version: int,
    now: datetime,
    expected_status: OrderStatus | None = None,
    **fields,
) -> None:
    """
    リードモデル (orders) を更新する。

    version (と指定があれば status) が読み込み時から変わっていれば
    ConcurrentModification。
    """
    assignments = "".join(f"{key} = :{key}, " for key in fields)
    where = "id = :id AND version = :expected_version"
    params = {
        **fields,
        "id": str(order_id),
        "expected_version": expected_version,
        "new_version": new_version,
        "now": now,
    }
    if expected_status is not None:
        where += " AND status = :expected_status"
        params["expected_status"] = expected_status.value

    result = await session.execute(
        text(f"UPDATE orders SET {assignments}version = :new_version, updated_at = :now WHERE {where}"),
        params,
    )
    if result.rowcount == 0:
        raise ConcurrentModification(f"Order {order_id} was modified concurrently")


async def _publish_stock_adjusted(
    redis: aioredis.Redis,
    product_id: UUID,
    delta: int,
    stock: int,
    reason: str,
    order_id: UUID,
    timestamp: datetime,
) -> None:
    event = inventory_events.StockAdjusted(
        product_id=product_id,
        delta=delta,
        stock=stock,
        reason=reason,
        order_id=order_id,
        timestamp=timestamp,
    )
    await publish_event(redis, INVENTORY_EVENTS, "StockAdjusted", event.model_dump(mode="json"))

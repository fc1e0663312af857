"""
Payment — コマンドハンドラ (Write 側)

支払い記録の作成と、その結果 (完了・失敗・返金など) の更新。
記録を作ると注文の payment_id が更新される。注文ステータスは変えない。
"""

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ConcurrentModification, InvalidTransition, PaymentNotFound, ValidationFailed
from ..messaging import ORDER_EVENTS, PAYMENT_EVENTS, publish_event
from ..order import commands as order_commands
from ..order import events as order_events
from . import events, queries
from .aggregate import PAYMENT_TRANSITIONS, SETTLED_STATUSES, Payment, PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)


def _parse(enum_cls, value: str, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationFailed(f"Unknown payment {label}: {value}") from None


async def record_payment(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: UUID,
    amount: float,
    method: str,
    status: str = PaymentStatus.PENDING.value,
    transaction_id: str = "",
    failure_reason: str = "",
    currency: str = "USD",
) -> Payment:
    """
    支払い記録コマンド

    支払いを保存し、同じトランザクションで注文に紐付ける。
    """
    if amount <= 0:
        raise ValidationFailed("Payment amount must be positive")
    method_ = _parse(PaymentMethod, method, "method")
    status_ = _parse(PaymentStatus, status, "status")

    payment_id = uuid4()
    now = datetime.now(timezone.utc)
    try:
        # 注文が無ければ OrderNotFound
        await order_commands.load_order(session, order_id)
        await session.execute(
            text("""
                INSERT INTO payments
                    (id, order_id, amount, currency, method, status,
                     transaction_id, failure_reason, processed_at, created_at, updated_at)
                VALUES
                    (:id, :order_id, :amount, :currency, :method, :status,
                     :transaction_id, :failure_reason, :processed_at, :now, :now)
            """),
            {
                "id": str(payment_id),
                "order_id": str(order_id),
                "amount": amount,
                "currency": currency,
                "method": method_.value,
                "status": status_.value,
                "transaction_id": transaction_id,
                "failure_reason": failure_reason,
                "processed_at": now if status_ in SETTLED_STATUSES else None,
                "now": now,
            },
        )
        await order_commands.attach_payment(session, order_id, payment_id)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    event = events.PaymentRecorded(
        payment_id=payment_id,
        order_id=order_id,
        amount=amount,
        currency=currency,
        method=method_.value,
        status=status_.value,
        timestamp=now,
    )
    await publish_event(redis, PAYMENT_EVENTS, "PaymentRecorded", event.model_dump(mode="json"))
    attached = order_events.PaymentAttached(order_id=order_id, payment_id=payment_id, timestamp=now)
    await publish_event(redis, ORDER_EVENTS, "PaymentAttached", attached.model_dump(mode="json"))
    logger.info("Payment %s recorded for order %s (%s, %s)", payment_id, order_id, method_.value, status_.value)

    return await queries.load_payment(session, payment_id)


async def update_payment_status(
    session: AsyncSession,
    redis: aioredis.Redis,
    payment_id: UUID,
    status: str,
    transaction_id: str | None = None,
    failure_reason: str | None = None,
) -> Payment:
    """
    支払いステータス更新コマンド

        pending   → completed, failed, cancelled
        completed → refunded
    """
    target = _parse(PaymentStatus, status, "status")
    payment = await queries.load_payment(session, payment_id)
    if payment is None:
        raise PaymentNotFound()
    current = payment.status
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)

    now = datetime.now(timezone.utc)
    result = await session.execute(
        text("""
            UPDATE payments
            SET status = :status,
                transaction_id = :transaction_id,
                failure_reason = :failure_reason,
                processed_at = :processed_at,
                updated_at = :now
            WHERE id = :id AND status = :current
        """),
        {
            "status": target.value,
            "transaction_id": transaction_id if transaction_id is not None else payment.transaction_id,
            "failure_reason": failure_reason if failure_reason is not None else payment.failure_reason,
            "processed_at": now if target in SETTLED_STATUSES else payment.processed_at,
            "now": now,
            "id": str(payment_id),
            "current": current.value,
        },
    )
    if result.rowcount == 0:
        await session.rollback()
        raise ConcurrentModification(f"Payment {payment_id} was modified concurrently")
    await session.commit()

    event = events.PaymentStatusChanged(
        payment_id=payment_id,
        order_id=payment.order_id,
        from_status=current.value,
        to_status=target.value,
        timestamp=now,
    )
    await publish_event(redis, PAYMENT_EVENTS, "PaymentStatusChanged", event.model_dump(mode="json"))
    logger.info("Payment %s: %s -> %s", payment_id, current.value, target.value)

    return await queries.load_payment(session, payment_id)

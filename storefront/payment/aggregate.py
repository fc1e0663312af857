"""
Payment — 支払い記録

決済の実行や精算は扱わない。外部の決済サービスが返した結果を保存し、
注文側からは is_successful だけを参照する。
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from ..event_store import isoformat


class PaymentMethod(str, Enum):
    CARD = "card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# 処理が終わった (processed_at を記録する) 状態
SETTLED_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED})


@dataclass
class Payment:
    id: UUID
    order_id: UUID
    amount: float
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: str = ""
    failure_reason: str = ""
    processed_at: datetime | str | None = None
    created_at: datetime | str | None = None

    @property
    def is_successful(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    @property
    def can_be_refunded(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    @classmethod
    def from_row(cls, row) -> "Payment":
        return cls(
            id=UUID(str(row.id)),
            order_id=UUID(str(row.order_id)),
            amount=float(row.amount),
            currency=row.currency,
            method=PaymentMethod(row.method),
            status=PaymentStatus(row.status),
            transaction_id=row.transaction_id,
            failure_reason=row.failure_reason,
            processed_at=row.processed_at,
            created_at=row.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "order_id": str(self.order_id),
            "amount": self.amount,
            "currency": self.currency,
            "method": self.method.value,
            "status": self.status.value,
            "transaction_id": self.transaction_id,
            "failure_reason": self.failure_reason,
            "is_successful": self.is_successful,
            "processed_at": isoformat(self.processed_at),
            "created_at": isoformat(self.created_at),
        }

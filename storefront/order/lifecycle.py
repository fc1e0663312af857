"""
Order — ライフサイクル (状態遷移表)

    pending    → paid, cancelled
    paid       → processing, cancelled, refunded
    processing → shipped, cancelled
    shipped    → delivered
    delivered  → refunded

cancelled と refunded は終端状態で、そこから先へは遷移できない。

遷移表とは別に、ユーザー自身によるキャンセルは pending / paid のときだけ許可する
(can_be_cancelled)。processing の注文を止められるのは管理者の状態更新だけ。
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PAID})
REFUNDABLE_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED})
TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in VALID_TRANSITIONS[OrderStatus(current)]


def can_be_cancelled(status: OrderStatus) -> bool:
    """ユーザーがキャンセルできる状態か"""
    return OrderStatus(status) in CANCELLABLE_STATUSES


def can_be_refunded(status: OrderStatus) -> bool:
    return OrderStatus(status) in REFUNDABLE_STATUSES


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES

"""
Order — 注文集約 (Order Aggregate)

集約の状態は直接保存せず、event_store のイベントをリプレイして復元する。
orders テーブルは一覧・参照用のリードモデル。

注文明細 (OrderLine) は注文作成時のスナップショットで、以後変更されない。
"""

from dataclasses import dataclass
from uuid import UUID

from .lifecycle import OrderStatus, can_be_cancelled, can_be_refunded


@dataclass(frozen=True)
class OrderLine:
    """注文明細 (不変)。カート明細 CartLine とは別の型。"""

    product_id: UUID
    product_name: str
    quantity: int
    price: float

    @property
    def subtotal(self) -> float:
        return round(self.price * self.quantity, 2)


class OrderAggregate:
    """
    注文集約 — イベントから現在の状態を再構築する。

    状態遷移の規則は lifecycle.py を参照。
    """

    def __init__(self) -> None:
        self.id: UUID | None = None
        self.user_id: UUID | None = None
        self.lines: tuple[OrderLine, ...] = ()
        self.total: float = 0
        self.shipping_address: str = ""
        self.billing_address: str = ""
        self.tracking_code: str = ""
        self.payment_id: UUID | None = None
        self.status: OrderStatus | None = None
        self.version: int = 0

    # ── イベント適用メソッド ──────────────────────────

    def apply_order_created(self, data: dict) -> None:
        self.id = UUID(str(data["order_id"]))
        self.user_id = UUID(str(data["user_id"]))
        self.lines = tuple(
            OrderLine(
                product_id=UUID(str(item["product_id"])),
                product_name=item["product_name"],
                quantity=item["quantity"],
                price=item["price"],
            )
            for item in data["items"]
        )
        self.total = data["total"]
        self.shipping_address = data["shipping_address"]
        self.billing_address = data["billing_address"]
        self.status = OrderStatus.PENDING

    def apply_order_status_changed(self, data: dict) -> None:
        self.status = OrderStatus(data["to_status"])

    def apply_order_cancelled(self, _data: dict) -> None:
        self.status = OrderStatus.CANCELLED

    def apply_tracking_code_assigned(self, data: dict) -> None:
        self.tracking_code = data["tracking_code"]

    def apply_payment_attached(self, data: dict) -> None:
        self.payment_id = UUID(str(data["payment_id"]))

    # ── イベントリプレイ ─────────────────────────────

    def apply_event(self, event_type: str, event_data: dict) -> None:
        """イベントタイプに応じた apply メソッドを呼び出す。"""
        handler = {
            "OrderCreated": self.apply_order_created,
            "OrderStatusChanged": self.apply_order_status_changed,
            "OrderCancelled": self.apply_order_cancelled,
            "TrackingCodeAssigned": self.apply_tracking_code_assigned,
            "PaymentAttached": self.apply_payment_attached,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        """イベント列から集約を再構築する。"""
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg

    # ── 参照 ─────────────────────────────────────────

    @property
    def exists(self) -> bool:
        return self.id is not None

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "status": self.status.value if self.status else None,
            "items": [
                {
                    "product_id": str(line.product_id),
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "price": line.price,
                    "subtotal": line.subtotal,
                }
                for line in self.lines
            ],
            "total": self.total,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "tracking_code": self.tracking_code,
            "payment_id": str(self.payment_id) if self.payment_id else None,
            "can_be_cancelled": self.status is not None and can_be_cancelled(self.status),
            "can_be_refunded": self.status is not None and can_be_refunded(self.status),
            "version": self.version,
        }

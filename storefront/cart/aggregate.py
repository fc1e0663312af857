"""
Cart — カート集約

カートは作業中のデータなので、イベントではなく現在の状態をそのまま保存する。
明細の単価は最初に追加したときの価格で固定される。
"""

from dataclasses import dataclass, field
from uuid import UUID


@dataclass
class CartLine:
    """カート明細 (可変)。注文明細 OrderLine とは別の型。"""

    product_id: UUID
    quantity: int
    price: float
    product_name: str = ""
    current_price: float | None = None

    @property
    def subtotal(self) -> float:
        return round(self.price * self.quantity, 2)


@dataclass
class Cart:
    id: UUID
    user_id: UUID
    lines: list[CartLine] = field(default_factory=list)

    @property
    def total(self) -> float:
        """明細の 単価 × 数量 の合計 (追加時に固定した単価を使う)"""
        return round(sum(line.price * line.quantity for line in self.lines), 2)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def find_line(self, product_id: UUID) -> CartLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "items": [
                {
                    "product_id": str(line.product_id),
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "price": line.price,
                    "current_price": line.current_price,
                    "subtotal": line.subtotal,
                }
                for line in self.lines
            ],
            "total": self.total,
            "item_count": self.item_count,
        }

"""
Storefront — ドメイン例外

コマンドはビジネスルール違反をこれらの例外で通知する。
API 層 (main.py) は StoreError をまとめて捕捉し、
status_code と kind を使って HTTP レスポンスに変換する。
"""


class StoreError(Exception):
    """全ドメイン例外の基底クラス"""

    kind = "error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self.args[0])


# ── NotFound ────────────────────────────────────


class NotFound(StoreError):
    kind = "not_found"
    status_code = 404


class ProductNotFound(NotFound):
    """Product not found"""


class CartNotFound(NotFound):
    """Cart not found"""


class CartItemNotFound(NotFound):
    """Item not found in cart"""


class OrderNotFound(NotFound):
    """Order not found"""


class PaymentNotFound(NotFound):
    """Payment not found"""


# ── Validation ──────────────────────────────────


class ValidationFailed(StoreError):
    kind = "validation"
    status_code = 422


class CartEmpty(ValidationFailed):
    """Cart is empty"""


# ── 在庫 ────────────────────────────────────────


class InsufficientStock(StoreError):
    """要求数量を在庫で満たせない"""

    kind = "insufficient_stock"
    status_code = 409

    def __init__(
        self,
        product_name: str,
        requested: int | None = None,
        available: int | None = None,
        message: str = "",
    ) -> None:
        if not message:
            message = f"Insufficient stock for product: {product_name}"
            if requested is not None and available is not None:
                message += f" (requested={requested}, available={available})"
        super().__init__(message)
        self.product_name = product_name
        self.requested = requested
        self.available = available


class ProductInactive(InsufficientStock):
    """非公開の商品は引き当てられない (カート追加時も在庫不足として扱える)"""

    def __init__(self, product_name: str) -> None:
        super().__init__(product_name, message=f"Product is not available: {product_name}")


class StockUpdateFailed(StoreError):
    """注文作成中の在庫引き当てに失敗した (トランザクションはロールバック済み)"""

    kind = "stock_update_failed"
    status_code = 409

    def __init__(self, product_name: str) -> None:
        super().__init__(f"Failed to update stock for product: {product_name}")
        self.product_name = product_name


class StockRestoreFailed(StoreError):
    """キャンセル時の在庫戻しに失敗した (ステータスは変更されない)"""

    kind = "stock_restore_failed"
    status_code = 409

    def __init__(self, product_name: str) -> None:
        super().__init__(f"Failed to restore stock for product: {product_name}")
        self.product_name = product_name


# ── 注文ライフサイクル ──────────────────────────


class InvalidTransition(StoreError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str, message: str = "") -> None:
        super().__init__(message or f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target


class OrderNotCancellable(InvalidTransition):
    def __init__(self, current: str) -> None:
        super().__init__(current, "cancelled", f"Order cannot be cancelled in status: {current}")


class Unauthorized(StoreError):
    """Order does not belong to this user"""

    kind = "unauthorized"
    status_code = 403


# ── 競合 ────────────────────────────────────────


class ConflictError(StoreError):
    kind = "conflict"
    status_code = 409


class ConcurrentModification(ConflictError):
    """Aggregate was modified concurrently, retry the request"""


class DuplicateSku(ConflictError):
    """Product with this SKU already exists"""


class ProductInUse(ConflictError):
    """Product is referenced by open orders"""

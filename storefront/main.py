"""
Storefront — FastAPI エントリーポイント

Command (状態を変える POST/PUT/PATCH/DELETE) と Query (GET) のエンドポイントを分離。
操作するユーザーは X-User-Id ヘッダーで受け取る (認証は前段のゲートウェイが行う)。

ドメイン例外 (StoreError) は 1 つの例外ハンドラで HTTP レスポンスに変換する。
"""

import logging
import os
from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import event_store
from .cart import commands as cart_commands
from .cart import queries as cart_queries
from .errors import StoreError, Unauthorized
from .inventory import commands as inventory_commands
from .inventory import queries as inventory_queries
from .order import commands as order_commands
from .order import queries as order_queries
from .payment import commands as payment_commands
from .payment import queries as payment_queries
from .schema import create_schema

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
SQL_ECHO = os.environ.get("SQL_ECHO", "").lower() in ("1", "true", "yes")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    await create_schema(engine)
    logger.info("Storefront started")
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront", lifespan=lifespan)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


# ── Request Models ───────────────────────────────


class CreateProductRequest(BaseModel):
    name: str
    sku: str
    price: float
    stock: int = 0
    description: str = ""
    category: str = ""
    is_active: bool = True


class UpdateProductRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    price: float | None = None
    category: str | None = None


class AdjustStockRequest(BaseModel):
    delta: int
    reason: str = "manual adjustment"


class AddItemRequest(BaseModel):
    product_id: UUID
    quantity: int


class UpdateItemRequest(BaseModel):
    quantity: int


class CreateOrderRequest(BaseModel):
    shipping_address: str
    billing_address: str


class CancelOrderRequest(BaseModel):
    reason: str = ""


class UpdateStatusRequest(BaseModel):
    status: str


class TrackingCodeRequest(BaseModel):
    tracking_code: str


class RecordPaymentRequest(BaseModel):
    amount: float
    method: str
    status: str = "pending"
    transaction_id: str = ""
    failure_reason: str = ""
    currency: str = "USD"


class UpdatePaymentStatusRequest(BaseModel):
    status: str
    transaction_id: str | None = None
    failure_reason: str | None = None


# ── Command Endpoints: 商品カタログ ──────────────


@app.post("/commands/products", status_code=201)
async def cmd_create_product(req: CreateProductRequest):
    """商品登録コマンド"""
    async with async_session() as session:
        return await inventory_commands.create_product(
            session, redis_pool,
            req.name, req.sku, req.price,
            stock=req.stock,
            description=req.description,
            category=req.category,
            is_active=req.is_active,
        )


@app.patch("/commands/products/{product_id}")
async def cmd_update_product(product_id: UUID, req: UpdateProductRequest):
    async with async_session() as session:
        return await inventory_commands.update_product(
            session, redis_pool, product_id,
            name=req.name,
            description=req.description,
            price=req.price,
            category=req.category,
        )


@app.post("/commands/products/{product_id}/activate")
async def cmd_activate_product(product_id: UUID):
    async with async_session() as session:
        return await inventory_commands.set_product_active(session, redis_pool, product_id, True)


@app.post("/commands/products/{product_id}/deactivate")
async def cmd_deactivate_product(product_id: UUID):
    async with async_session() as session:
        return await inventory_commands.set_product_active(session, redis_pool, product_id, False)


@app.delete("/commands/products/{product_id}", status_code=204)
async def cmd_delete_product(product_id: UUID):
    async with async_session() as session:
        await inventory_commands.delete_product(session, redis_pool, product_id)


@app.post("/commands/products/{product_id}/stock")
async def cmd_adjust_stock(product_id: UUID, req: AdjustStockRequest):
    """在庫の手動調整 (入荷は正、棚卸し差異などは負の delta)"""
    async with async_session() as session:
        return await inventory_commands.adjust_stock(
            session, redis_pool, product_id, req.delta, req.reason
        )


# ── Command Endpoints: カート ────────────────────


@app.post("/commands/cart/items")
async def cmd_add_item(req: AddItemRequest, x_user_id: UUID = Header()):
    """カート追加コマンド (同じ商品は数量を加算)"""
    async with async_session() as session:
        cart = await cart_commands.add_item(
            session, redis_pool, x_user_id, req.product_id, req.quantity
        )
        return cart.to_dict()


@app.put("/commands/cart/items/{product_id}")
async def cmd_update_item(product_id: UUID, req: UpdateItemRequest, x_user_id: UUID = Header()):
    """明細の数量上書き (0 以下なら削除)"""
    async with async_session() as session:
        cart = await cart_commands.update_item(
            session, redis_pool, x_user_id, product_id, req.quantity
        )
        return cart.to_dict()


@app.delete("/commands/cart/items/{product_id}")
async def cmd_remove_item(product_id: UUID, x_user_id: UUID = Header()):
    async with async_session() as session:
        cart = await cart_commands.remove_item(session, redis_pool, x_user_id, product_id)
        return cart.to_dict()


@app.delete("/commands/cart")
async def cmd_clear_cart(x_user_id: UUID = Header()):
    async with async_session() as session:
        cart = await cart_commands.clear_cart(session, redis_pool, x_user_id)
        return cart.to_dict()


# ── Command Endpoints: 注文 ──────────────────────


@app.post("/commands/orders", status_code=201)
async def cmd_create_order(req: CreateOrderRequest, x_user_id: UUID = Header()):
    """注文作成コマンド (カートの中身を注文に変換する)"""
    async with async_session() as session:
        agg = await order_commands.create_order(
            session, redis_pool, x_user_id, req.shipping_address, req.billing_address
        )
        return agg.to_dict()


@app.post("/commands/orders/{order_id}/cancel")
async def cmd_cancel_order(order_id: UUID, req: CancelOrderRequest, x_user_id: UUID = Header()):
    """注文キャンセルコマンド (ユーザー用)"""
    async with async_session() as session:
        agg = await order_commands.cancel_order(
            session, redis_pool, x_user_id, order_id, req.reason
        )
        return agg.to_dict()


@app.post("/commands/orders/{order_id}/status")
async def cmd_update_status(order_id: UUID, req: UpdateStatusRequest):
    """ステータス更新コマンド (管理者用)"""
    async with async_session() as session:
        agg = await order_commands.update_status(session, redis_pool, order_id, req.status)
        return agg.to_dict()


@app.post("/commands/orders/{order_id}/tracking")
async def cmd_assign_tracking_code(order_id: UUID, req: TrackingCodeRequest):
    async with async_session() as session:
        agg = await order_commands.assign_tracking_code(
            session, redis_pool, order_id, req.tracking_code
        )
        return agg.to_dict()


@app.post("/commands/orders/{order_id}/payments", status_code=201)
async def cmd_record_payment(order_id: UUID, req: RecordPaymentRequest):
    """支払い記録コマンド (決済サービスの結果を保存する)"""
    async with async_session() as session:
        payment = await payment_commands.record_payment(
            session, redis_pool, order_id,
            req.amount, req.method,
            status=req.status,
            transaction_id=req.transaction_id,
            failure_reason=req.failure_reason,
            currency=req.currency,
        )
        return payment.to_dict()


@app.post("/commands/payments/{payment_id}/status")
async def cmd_update_payment_status(payment_id: UUID, req: UpdatePaymentStatusRequest):
    async with async_session() as session:
        payment = await payment_commands.update_payment_status(
            session, redis_pool, payment_id, req.status,
            transaction_id=req.transaction_id,
            failure_reason=req.failure_reason,
        )
        return payment.to_dict()


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/products/{product_id}")
async def query_get_product(product_id: UUID):
    async with async_session() as session:
        product = await inventory_queries.get_product(session, product_id)
        if not product:
            raise HTTPException(404, "Product not found")
        return product


@app.get("/queries/products/{product_id}/movements")
async def query_stock_movements(product_id: UUID):
    """在庫の増減履歴"""
    async with async_session() as session:
        if not await inventory_queries.get_product(session, product_id):
            raise HTTPException(404, "Product not found")
        return await inventory_queries.get_stock_movements(session, product_id)


@app.get("/queries/cart")
async def query_get_cart(x_user_id: UUID = Header()):
    async with async_session() as session:
        cart = await cart_queries.get_cart(session, x_user_id)
        if not cart:
            raise HTTPException(404, "Cart not found")
        return cart


@app.get("/queries/orders")
async def query_list_orders(x_user_id: UUID = Header()):
    """自分の注文一覧"""
    async with async_session() as session:
        return await order_queries.list_orders(session, x_user_id)


async def _check_order_owner(session, order_id, user_id: UUID) -> dict:
    order = await order_queries.get_order(session, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    if order["user_id"] != str(user_id):
        raise Unauthorized()
    return order


@app.get("/queries/orders/{order_id}")
async def query_get_order(order_id: UUID, x_user_id: UUID = Header()):
    async with async_session() as session:
        return await _check_order_owner(session, order_id, x_user_id)


@app.get("/queries/orders/{order_id}/payment")
async def query_order_payment(order_id: UUID, x_user_id: UUID = Header()):
    async with async_session() as session:
        await _check_order_owner(session, order_id, x_user_id)
        payment = await payment_queries.get_payment_by_order(session, order_id)
        if not payment:
            raise HTTPException(404, "Payment not found")
        return payment


@app.get("/queries/payments/{payment_id}")
async def query_get_payment(payment_id: UUID, x_user_id: UUID = Header()):
    async with async_session() as session:
        payment = await payment_queries.get_payment(session, payment_id)
        if not payment:
            raise HTTPException(404, "Payment not found")
        await _check_order_owner(session, payment["order_id"], x_user_id)
        return payment


# ── Event Store ──────────────────────────────────


@app.get("/events/{aggregate_id}")
async def get_aggregate_events(aggregate_id: UUID):
    """注文の履歴 (イベント列) を返す"""
    async with async_session() as session:
        return await event_store.load_events(session, aggregate_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront"}

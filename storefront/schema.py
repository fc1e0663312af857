"""
Storefront — データベーススキーマ

products / carts / orders はリードモデル兼ステートテーブル。
注文の履歴は event_store に追記され、(aggregate_id, version) の
UNIQUE 制約が楽観的ロックとして働く。

DDL は PostgreSQL と SQLite (テスト用) の両方で動くように書いている。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS products (
        id          UUID PRIMARY KEY,
        name        VARCHAR(255) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        sku         VARCHAR(64) NOT NULL UNIQUE,
        category    VARCHAR(100) NOT NULL DEFAULT '',
        price       NUMERIC(12, 2) NOT NULL,
        stock       INTEGER NOT NULL DEFAULT 0 CHECK (stock >= 0),
        is_active   BOOLEAN NOT NULL DEFAULT TRUE,
        created_at  TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at  TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stock_movements (
        id          UUID PRIMARY KEY,
        product_id  UUID NOT NULL,
        delta       INTEGER NOT NULL,
        stock_after INTEGER NOT NULL,
        reason      VARCHAR(255) NOT NULL DEFAULT '',
        order_id    UUID,
        created_at  TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS carts (
        id          UUID PRIMARY KEY,
        user_id     UUID NOT NULL UNIQUE,
        created_at  TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at  TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cart_items (
        id          UUID PRIMARY KEY,
        cart_id     UUID NOT NULL REFERENCES carts (id) ON DELETE CASCADE,
        product_id  UUID NOT NULL,
        quantity    INTEGER NOT NULL CHECK (quantity > 0),
        price       NUMERIC(12, 2) NOT NULL,
        created_at  TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at  TIMESTAMP WITH TIME ZONE NOT NULL,
        UNIQUE (cart_id, product_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id               UUID PRIMARY KEY,
        user_id          UUID NOT NULL,
        status           VARCHAR(20) NOT NULL,
        total            NUMERIC(12, 2) NOT NULL,
        shipping_address TEXT NOT NULL,
        billing_address  TEXT NOT NULL,
        tracking_code    VARCHAR(100) NOT NULL DEFAULT '',
        payment_id       UUID,
        version          INTEGER NOT NULL,
        created_at       TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at       TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_orders_user_id ON orders (user_id)",
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id           UUID PRIMARY KEY,
        order_id     UUID NOT NULL REFERENCES orders (id),
        product_id   UUID NOT NULL,
        product_name VARCHAR(255) NOT NULL,
        quantity     INTEGER NOT NULL CHECK (quantity > 0),
        price        NUMERIC(12, 2) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        id             UUID PRIMARY KEY,
        order_id       UUID NOT NULL REFERENCES orders (id),
        amount         NUMERIC(12, 2) NOT NULL,
        currency       VARCHAR(3) NOT NULL DEFAULT 'USD',
        method         VARCHAR(20) NOT NULL,
        status         VARCHAR(20) NOT NULL,
        transaction_id VARCHAR(255) NOT NULL DEFAULT '',
        failure_reason VARCHAR(500) NOT NULL DEFAULT '',
        processed_at   TIMESTAMP WITH TIME ZONE,
        created_at     TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at     TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event_store (
        id             UUID PRIMARY KEY,
        aggregate_id   UUID NOT NULL,
        aggregate_type VARCHAR(50) NOT NULL,
        event_type     VARCHAR(100) NOT NULL,
        event_data     TEXT NOT NULL,
        version        INTEGER NOT NULL,
        created_at     TIMESTAMP WITH TIME ZONE NOT NULL,
        UNIQUE (aggregate_id, version)
    )
    """,
]

# 依存関係の逆順
TABLES = [
    "event_store",
    "payments",
    "order_items",
    "orders",
    "cart_items",
    "carts",
    "stock_movements",
    "products",
]


async def create_schema(engine: AsyncEngine) -> None:
    """全テーブルを作成する (既存テーブルはそのまま)。"""
    async with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(text(statement))


async def drop_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for table in TABLES:
            await conn.execute(text(f"DROP TABLE IF EXISTS {table}"))

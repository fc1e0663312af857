"""Pytest fixtures: per-test SQLite database, fake Redis and catalogue seeding."""

import os

# storefront.main reads DATABASE_URL at import time; API tests swap the engine per test.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from uuid import UUID, uuid4

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from storefront.cart import commands as cart_commands
from storefront.inventory import commands as inventory_commands
from storefront.inventory import queries as inventory_queries
from storefront.order import commands as order_commands
from storefront.schema import create_schema


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}"


@pytest.fixture
async def engine(database_url):
    engine = create_async_engine(database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_product(session, redis):
    """Create a catalogue product and return its id."""

    async def _make(name="Widget", price=10.0, stock=5, is_active=True) -> UUID:
        product = await inventory_commands.create_product(
            session, redis, name, f"SKU-{uuid4().hex[:10]}", price,
            stock=stock, is_active=is_active,
        )
        return UUID(product["id"])

    return _make


@pytest.fixture
def stock_of(session):
    async def _stock(product_id: UUID) -> int:
        product = await inventory_queries.get_product(session, product_id)
        return product["stock"]

    return _stock


@pytest.fixture
def fill_cart(session, redis):
    """Add (product_id, quantity) pairs to a user's cart."""

    async def _fill(user_id: UUID, *lines: tuple[UUID, int]):
        cart = None
        for product_id, quantity in lines:
            cart = await cart_commands.add_item(session, redis, user_id, product_id, quantity)
        return cart

    return _fill


@pytest.fixture
def place_order(session, redis, fill_cart):
    """Fill the user's cart and check it out."""

    async def _place(user_id: UUID, *lines: tuple[UUID, int]):
        await fill_cart(user_id, *lines)
        return await order_commands.create_order(
            session, redis, user_id, "1 Main St, Springfield", "PO Box 9, Springfield"
        )

    return _place

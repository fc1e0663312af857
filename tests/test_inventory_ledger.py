"""Tests for the inventory ledger and catalogue administration."""

import asyncio
import random
from uuid import uuid4

import pytest

from storefront.errors import (
    DuplicateSku,
    InsufficientStock,
    ProductInactive,
    ProductInUse,
    ProductNotFound,
    ValidationFailed,
)
from storefront.inventory import commands, ledger, queries
from storefront.order import commands as order_commands


class TestAdjust:
    async def test_reservation_decrements_stock(self, session, make_product, stock_of):
        product_id = await make_product(stock=5)
        stock = await ledger.adjust(session, product_id, -2, reason="test")
        await session.commit()
        assert stock == 3
        assert await stock_of(product_id) == 3

    async def test_restock_increments_stock(self, session, make_product, stock_of):
        product_id = await make_product(stock=1)
        assert await ledger.adjust(session, product_id, 4, reason="test") == 5
        await session.commit()
        assert await stock_of(product_id) == 5

    async def test_reserving_exact_stock_reaches_zero(self, session, make_product):
        product_id = await make_product(stock=2)
        assert await ledger.adjust(session, product_id, -2, reason="test") == 0

    async def test_over_reservation_raises_and_keeps_stock(self, session, make_product, stock_of):
        product_id = await make_product(name="Gadget", stock=2)
        with pytest.raises(InsufficientStock) as exc_info:
            await ledger.adjust(session, product_id, -3, reason="test")
        await session.rollback()
        assert exc_info.value.product_name == "Gadget"
        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert "Gadget" in exc_info.value.message
        assert await stock_of(product_id) == 2

    async def test_unknown_product_raises(self, session):
        with pytest.raises(ProductNotFound):
            await ledger.adjust(session, uuid4(), -1, reason="test")

    async def test_zero_delta_is_rejected(self, session, make_product):
        product_id = await make_product()
        with pytest.raises(ValidationFailed):
            await ledger.adjust(session, product_id, 0, reason="test")

    async def test_inactive_product_cannot_be_reserved(self, session, make_product):
        product_id = await make_product(is_active=False)
        with pytest.raises(ProductInactive):
            await ledger.adjust(session, product_id, -1, reason="test")

    async def test_inactive_product_can_be_restocked(self, session, make_product):
        product_id = await make_product(stock=0, is_active=False)
        assert await ledger.adjust(session, product_id, 3, reason="test") == 3

    async def test_successful_adjustments_are_recorded(self, session, make_product):
        product_id = await make_product(stock=5)
        order_id = uuid4()
        await ledger.adjust(session, product_id, -2, reason="order placed", order_id=order_id)
        await ledger.adjust(session, product_id, 1, reason="returned")
        await session.commit()

        movements = await queries.get_stock_movements(session, product_id)
        assert [(m["delta"], m["stock_after"]) for m in movements] == [(-2, 3), (1, 4)]
        assert movements[0]["order_id"] == str(order_id)
        assert movements[1]["order_id"] is None

    async def test_rejected_adjustment_is_not_recorded(self, session, make_product):
        product_id = await make_product(stock=1)
        with pytest.raises(InsufficientStock):
            await ledger.adjust(session, product_id, -2, reason="test")
        await session.rollback()
        assert await queries.get_stock_movements(session, product_id) == []


class TestStockInvariant:
    async def test_random_sequence_never_goes_negative(self, session, make_product, stock_of):
        rng = random.Random(1234)
        product_id = await make_product(stock=10)
        expected = 10
        for _ in range(60):
            delta = rng.choice([-4, -3, -2, -1, 1, 2, 3])
            try:
                stock = await ledger.adjust(session, product_id, delta, reason="random")
                await session.commit()
                expected += delta
                assert stock == expected
            except InsufficientStock:
                await session.rollback()
                assert expected + delta < 0
            assert await stock_of(product_id) >= 0
        assert await stock_of(product_id) == expected

    async def test_concurrent_reservations_do_not_oversell(self, session_factory, redis):
        async with session_factory() as setup:
            product = await commands.create_product(setup, redis, "Last Units", "SKU-LAST", 5.0, stock=3)
        product_id = product["id"]

        async def reserve() -> bool:
            async with session_factory() as s:
                try:
                    await ledger.adjust(s, product_id, -1, reason="concurrent")
                    await s.commit()
                    return True
                except InsufficientStock:
                    await s.rollback()
                    return False

        results = await asyncio.gather(*(reserve() for _ in range(8)))

        assert results.count(True) == 3
        async with session_factory() as check:
            assert (await queries.get_product(check, product_id))["stock"] == 0


class TestCatalogue:
    async def test_create_product(self, session, redis):
        product = await commands.create_product(
            session, redis, "Widget", "SKU-1", 12.5, stock=4, category="tools"
        )
        assert product["name"] == "Widget"
        assert product["price"] == 12.5
        assert product["stock"] == 4
        assert product["is_active"] is True

    async def test_duplicate_sku_is_rejected(self, session, redis):
        await commands.create_product(session, redis, "Widget", "SKU-1", 1.0)
        with pytest.raises(DuplicateSku):
            await commands.create_product(session, redis, "Other", "SKU-1", 2.0)

    async def test_negative_initial_stock_is_rejected(self, session, redis):
        with pytest.raises(ValidationFailed):
            await commands.create_product(session, redis, "Widget", "SKU-1", 1.0, stock=-1)

    async def test_update_changes_fields_but_not_stock(self, session, redis, make_product):
        product_id = await make_product(price=10.0, stock=5)
        product = await commands.update_product(session, redis, product_id, name="Renamed", price=11.0)
        assert product["name"] == "Renamed"
        assert product["price"] == 11.0
        assert product["stock"] == 5

    async def test_update_unknown_product(self, session, redis):
        with pytest.raises(ProductNotFound):
            await commands.update_product(session, redis, uuid4(), name="x")

    async def test_deactivate_and_activate(self, session, redis, make_product):
        product_id = await make_product()
        assert (await commands.set_product_active(session, redis, product_id, False))["is_active"] is False
        assert (await commands.set_product_active(session, redis, product_id, True))["is_active"] is True

    async def test_delete_product(self, session, redis, make_product):
        product_id = await make_product()
        await commands.delete_product(session, redis, product_id)
        assert await queries.get_product(session, product_id) is None
        with pytest.raises(ProductNotFound):
            await commands.delete_product(session, redis, product_id)

    async def test_delete_refused_while_order_can_still_restock(
        self, session, redis, user_id, make_product, place_order, stock_of
    ):
        product_id = await make_product(stock=5)
        order = await place_order(user_id, (product_id, 2))

        with pytest.raises(ProductInUse):
            await commands.delete_product(session, redis, product_id)
        assert await stock_of(product_id) == 3

        await order_commands.cancel_order(session, redis, user_id, order.id)
        await commands.delete_product(session, redis, product_id)
        assert await queries.get_product(session, product_id) is None

    async def test_adjust_stock_commits_and_publishes(self, session, redis, make_product, stock_of):
        product_id = await make_product(stock=2)
        pubsub = redis.pubsub()
        await pubsub.subscribe("inventory_events")
        await pubsub.get_message(timeout=1)

        result = await commands.adjust_stock(session, redis, product_id, 8, "delivery")

        assert result == {"product_id": str(product_id), "stock": 10}
        assert await stock_of(product_id) == 10
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
        assert message is not None
        assert '"StockAdjusted"' in message["data"]
        await pubsub.aclose()

    async def test_adjust_stock_below_zero_is_rejected(self, session, redis, make_product, stock_of):
        product_id = await make_product(stock=2)
        with pytest.raises(InsufficientStock):
            await commands.adjust_stock(session, redis, product_id, -3, "shrinkage")
        assert await stock_of(product_id) == 2

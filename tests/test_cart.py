"""Tests for the cart manager."""

from uuid import uuid4

import pytest

from storefront.cart import commands, queries
from storefront.cart.aggregate import Cart, CartLine
from storefront.errors import (
    CartItemNotFound,
    CartNotFound,
    InsufficientStock,
    ProductInactive,
    ProductNotFound,
    ValidationFailed,
)
from storefront.inventory import commands as inventory_commands


class TestCartTotals:
    def test_total_and_item_count(self):
        cart = Cart(
            id=uuid4(),
            user_id=uuid4(),
            lines=[
                CartLine(product_id=uuid4(), quantity=2, price=10.0),
                CartLine(product_id=uuid4(), quantity=1, price=20.0),
            ],
        )
        assert cart.total == 40.0
        assert cart.item_count == 3

    def test_empty_cart(self):
        cart = Cart(id=uuid4(), user_id=uuid4())
        assert cart.total == 0
        assert cart.item_count == 0
        assert cart.is_empty

    def test_total_is_rounded_to_cents(self):
        cart = Cart(
            id=uuid4(),
            user_id=uuid4(),
            lines=[CartLine(product_id=uuid4(), quantity=3, price=0.1)],
        )
        assert cart.total == 0.3


class TestGetOrCreate:
    async def test_creates_empty_cart(self, session, user_id):
        cart = await commands.get_or_create_cart(session, user_id)
        assert cart.user_id == user_id
        assert cart.is_empty

    async def test_is_idempotent(self, session, user_id):
        first = await commands.get_or_create_cart(session, user_id)
        second = await commands.get_or_create_cart(session, user_id)
        assert first.id == second.id

    async def test_carts_are_per_user(self, session):
        a = await commands.get_or_create_cart(session, uuid4())
        b = await commands.get_or_create_cart(session, uuid4())
        assert a.id != b.id


class TestAddItem:
    async def test_add_creates_cart_lazily(self, session, redis, user_id, make_product):
        product_id = await make_product(price=10.0)
        assert await queries.get_cart(session, user_id) is None

        cart = await commands.add_item(session, redis, user_id, product_id, 2)

        assert cart.item_count == 2
        assert cart.total == 20.0

    async def test_double_add_merges_and_keeps_first_price(self, session, redis, user_id, make_product):
        product_id = await make_product(price=10.0, stock=10)
        await commands.add_item(session, redis, user_id, product_id, 2)
        await inventory_commands.update_product(session, redis, product_id, price=15.0)

        cart = await commands.add_item(session, redis, user_id, product_id, 3)

        assert len(cart.lines) == 1
        line = cart.lines[0]
        assert line.quantity == 5
        assert line.price == 10.0
        assert line.current_price == 15.0
        assert cart.total == 50.0

    async def test_zero_quantity_is_rejected(self, session, redis, user_id, make_product):
        product_id = await make_product()
        with pytest.raises(ValidationFailed):
            await commands.add_item(session, redis, user_id, product_id, 0)

    async def test_unknown_product(self, session, redis, user_id):
        with pytest.raises(ProductNotFound):
            await commands.add_item(session, redis, user_id, uuid4(), 1)

    async def test_checks_existing_plus_new_quantity(self, session, redis, user_id, make_product):
        product_id = await make_product(name="Gadget", stock=3)
        await commands.add_item(session, redis, user_id, product_id, 2)
        with pytest.raises(InsufficientStock) as exc_info:
            await commands.add_item(session, redis, user_id, product_id, 2)
        assert exc_info.value.product_name == "Gadget"

        cart = await queries.load_cart(session, user_id)
        assert cart.lines[0].quantity == 2

    async def test_inactive_product_is_unavailable(self, session, redis, user_id, make_product):
        product_id = await make_product(is_active=False)
        with pytest.raises(ProductInactive):
            await commands.add_item(session, redis, user_id, product_id, 1)

    async def test_add_does_not_reserve_stock(self, session, redis, user_id, make_product, stock_of):
        product_id = await make_product(stock=5)
        await commands.add_item(session, redis, user_id, product_id, 4)
        assert await stock_of(product_id) == 5


class TestUpdateItem:
    async def test_overwrites_quantity(self, session, redis, user_id, make_product, fill_cart):
        product_id = await make_product(stock=10)
        await fill_cart(user_id, (product_id, 2))

        cart = await commands.update_item(session, redis, user_id, product_id, 7)

        assert cart.lines[0].quantity == 7

    async def test_zero_quantity_removes_line(self, session, redis, user_id, make_product, fill_cart):
        product_id = await make_product()
        await fill_cart(user_id, (product_id, 2))

        cart = await commands.update_item(session, redis, user_id, product_id, 0)

        assert cart.is_empty

    async def test_negative_quantity_removes_line(self, session, redis, user_id, make_product, fill_cart):
        product_id = await make_product()
        await fill_cart(user_id, (product_id, 2))
        cart = await commands.update_item(session, redis, user_id, product_id, -1)
        assert cart.is_empty

    async def test_checks_availability(self, session, redis, user_id, make_product, fill_cart):
        product_id = await make_product(stock=3)
        await fill_cart(user_id, (product_id, 1))
        with pytest.raises(InsufficientStock):
            await commands.update_item(session, redis, user_id, product_id, 4)

    async def test_missing_line(self, session, redis, user_id, make_product, fill_cart):
        in_cart = await make_product()
        other = await make_product()
        await fill_cart(user_id, (in_cart, 1))
        with pytest.raises(CartItemNotFound):
            await commands.update_item(session, redis, user_id, other, 1)

    async def test_without_cart(self, session, redis, user_id, make_product):
        product_id = await make_product()
        with pytest.raises(CartNotFound):
            await commands.update_item(session, redis, user_id, product_id, 1)


class TestRemoveAndClear:
    async def test_remove_item(self, session, redis, user_id, make_product, fill_cart):
        keep = await make_product(price=3.0)
        drop = await make_product(price=5.0)
        await fill_cart(user_id, (keep, 1), (drop, 2))

        cart = await commands.remove_item(session, redis, user_id, drop)

        assert [line.product_id for line in cart.lines] == [keep]
        assert cart.total == 3.0

    async def test_remove_absent_line_is_a_no_op(self, session, redis, user_id, make_product, fill_cart):
        product_id = await make_product()
        await fill_cart(user_id, (product_id, 1))
        cart = await commands.remove_item(session, redis, user_id, uuid4())
        assert cart.item_count == 1

    async def test_clear_keeps_the_cart(self, session, redis, user_id, make_product, fill_cart):
        product_id = await make_product()
        filled = await fill_cart(user_id, (product_id, 1))

        cart = await commands.clear_cart(session, redis, user_id)

        assert cart.is_empty
        assert cart.id == filled.id

    async def test_clear_without_cart(self, session, redis, user_id):
        with pytest.raises(CartNotFound):
            await commands.clear_cart(session, redis, user_id)

    async def test_deleting_product_drops_cart_line(self, session, redis, user_id, make_product, fill_cart):
        product_id = await make_product()
        await fill_cart(user_id, (product_id, 1))
        await inventory_commands.delete_product(session, redis, product_id)
        cart = await queries.load_cart(session, user_id)
        assert cart.is_empty

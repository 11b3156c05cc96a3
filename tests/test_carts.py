"""Tests for the cart store."""

from __future__ import annotations

import pytest

from errors import InsufficientStock, NotFound
from schemas import ProductUpdate


class TestCart:
    def test_created_lazily(self, carts, user_id) -> None:
        assert carts.find(user_id) is None
        cart = carts.get_cart(user_id)
        assert cart["items"] == []
        assert cart["summary"] == {"total_items": 0, "item_count": 0, "total_amount": 0}
        carts.get_cart(user_id)
        assert carts.collection.count_documents({"user_id": user_id}) == 1

    def test_add_captures_price(self, carts, catalog, make_product, user_id) -> None:
        pid = make_product(price=12.5)
        cart = carts.add_item(user_id, pid, 2)
        catalog.update_product(pid, ProductUpdate(price=99.0))

        assert cart["items"][0]["price"] == 12.5
        assert carts.summary(user_id)["total_amount"] == 25.0

    def test_adding_same_product_increments(self, carts, make_product, user_id) -> None:
        pid = make_product(stock=10)
        carts.add_item(user_id, pid, 2)
        cart = carts.add_item(user_id, pid, 3)
        assert len(cart["items"]) == 1
        assert cart["items"][0]["quantity"] == 5

    def test_add_over_stock_rejected(self, carts, make_product, user_id) -> None:
        pid = make_product(stock=3)
        with pytest.raises(InsufficientStock):
            carts.add_item(user_id, pid, 4)
        carts.add_item(user_id, pid, 2)
        with pytest.raises(InsufficientStock):
            carts.add_item(user_id, pid, 2)
        assert carts.summary(user_id)["total_items"] == 2

    def test_add_inactive_or_missing_product(self, carts, make_product, user_id) -> None:
        pid = make_product(is_active=False)
        with pytest.raises(NotFound):
            carts.add_item(user_id, pid, 1)
        with pytest.raises(NotFound):
            carts.add_item(user_id, "64b7f0c2a1b2c3d4e5f60718", 1)

    def test_update_quantity(self, carts, make_product, user_id) -> None:
        pid = make_product(stock=5)
        carts.add_item(user_id, pid, 1)
        cart = carts.update_item(user_id, pid, 4)
        assert cart["items"][0]["quantity"] == 4

    def test_update_over_stock_rejected(self, carts, make_product, user_id) -> None:
        pid = make_product(stock=5)
        carts.add_item(user_id, pid, 1)
        with pytest.raises(InsufficientStock):
            carts.update_item(user_id, pid, 6)
        assert carts.summary(user_id)["total_items"] == 1

    def test_update_to_zero_removes_line(self, carts, make_product, user_id) -> None:
        a = make_product()
        b = make_product()
        carts.add_item(user_id, a, 1)
        carts.add_item(user_id, b, 1)
        cart = carts.update_item(user_id, a, 0)
        assert [i["product_id"] for i in cart["items"]] == [b]

    def test_update_without_cart(self, carts, make_product, user_id) -> None:
        with pytest.raises(NotFound):
            carts.update_item(user_id, make_product(), 1)

    def test_remove_and_clear(self, carts, make_product, user_id) -> None:
        a = make_product(price=10.0)
        b = make_product(price=2.5)
        carts.add_item(user_id, a, 1)
        carts.add_item(user_id, b, 2)

        cart = carts.remove_item(user_id, a)
        assert cart["summary"] == {"total_items": 2, "item_count": 1, "total_amount": 5.0}

        cart = carts.clear(user_id)
        assert cart["items"] == []
        assert carts.find(user_id) is not None

    def test_view_hides_inactive_products(self, carts, catalog, make_product, user_id) -> None:
        a = make_product(name="Kept")
        b = make_product(name="Retired")
        carts.add_item(user_id, a, 1)
        carts.add_item(user_id, b, 1)
        catalog.delete_product(b)

        cart = carts.get_cart(user_id)
        assert [i["product"]["name"] for i in cart["items"]] == ["Kept"]

    def test_summary(self, carts, make_product, user_id) -> None:
        assert carts.summary(user_id) == {"total_items": 0, "item_count": 0, "total_amount": 0}
        carts.add_item(user_id, make_product(price=19.99), 3)
        carts.add_item(user_id, make_product(price=0.01), 1)
        assert carts.summary(user_id) == {"total_items": 4, "item_count": 2, "total_amount": 59.98}

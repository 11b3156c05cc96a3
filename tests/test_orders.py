"""Tests for order construction helpers and the order store."""

from __future__ import annotations

import re
from datetime import datetime

import pytest

from errors import Forbidden, InvalidStatusTransition, NotFound, OrderNotCancellable
from orders import (
    build_payment_info,
    compute_pricing,
    generate_order_number,
    order_summary,
    transition_allowed,
)


class TestPricing:
    def test_free_shipping_over_threshold(self) -> None:
        pricing = compute_pricing(120)
        assert pricing.items_price == 120
        assert pricing.shipping_price == 0
        assert pricing.tax_price == 9.60
        assert pricing.total_price == 129.60

    def test_flat_fee_under_threshold(self) -> None:
        pricing = compute_pricing(20)
        assert pricing.shipping_price == 10
        assert pricing.tax_price == 1.60
        assert pricing.total_price == 31.60

    def test_exactly_threshold_still_pays_shipping(self) -> None:
        assert compute_pricing(100).shipping_price == 10
        assert compute_pricing(100.01).shipping_price == 0

    @pytest.mark.parametrize("items_price", [0, 0.05, 19.99, 33.33, 99.99, 100, 149.95, 1234.56])
    def test_total_is_sum_of_parts(self, items_price: float) -> None:
        p = compute_pricing(items_price)
        assert p.total_price == round(p.items_price + p.shipping_price + p.tax_price, 2)

    def test_tax_rounded_to_cents(self) -> None:
        assert compute_pricing(31.25).tax_price == 2.50
        assert compute_pricing(12.34).tax_price == 0.99
        assert compute_pricing(12.31).tax_price == 0.98


class TestOrderNumber:
    def test_format(self) -> None:
        assert re.fullmatch(r"LUX\d{9}", generate_order_number())

    def test_uses_last_six_timestamp_digits_and_padded_suffix(self) -> None:
        assert generate_order_number("LUX", now_ms=1700000123456, rand=7) == "LUX123456007"

    def test_custom_prefix(self) -> None:
        assert generate_order_number("ORD", now_ms=1700000999999, rand=999) == "ORD999999999"


class TestPaymentInfo:
    def test_cash_on_delivery_is_pending(self) -> None:
        info = build_payment_info("cod")
        assert info.status == "pending"
        assert info.paid_at is None
        assert info.transaction_id.startswith("TXN")

    @pytest.mark.parametrize("method", ["credit_card", "debit_card", "paypal"])
    def test_prepaid_methods_are_completed(self, method: str) -> None:
        now = datetime(2024, 5, 1, 12, 0, 0)
        info = build_payment_info(method, transaction_id="abc", now=now)
        assert info.status == "completed"
        assert info.paid_at == now
        assert info.transaction_id == "abc"

    def test_unknown_method_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_payment_info("bitcoin")


class TestTransitions:
    def test_forward_moves_allowed(self) -> None:
        assert transition_allowed("pending", "processing")
        assert transition_allowed("processing", "delivered")
        assert transition_allowed("shipped", "cancelled")

    def test_backward_and_terminal_moves_rejected(self) -> None:
        assert not transition_allowed("shipped", "pending")
        assert not transition_allowed("delivered", "cancelled")
        assert not transition_allowed("cancelled", "pending")


def _place(checkout, carts, make_product, user_id, address, method="credit_card", **product):
    pid = make_product(**product)
    carts.add_item(user_id, pid, 1)
    return pid, checkout.place_order(user_id, address, method)


class TestOrderStore:
    def test_owner_and_admin_can_read(self, checkout, carts, orders, make_product, user_id, admin_id, address) -> None:
        _, order = _place(checkout, carts, make_product, user_id, address)
        assert orders.get_for_user(order["id"], {"id": user_id, "role": "user"})["order_number"] == order["order_number"]
        fetched = orders.get_for_user(order["id"], {"id": admin_id, "role": "admin"})
        assert fetched["user"]["email"] == "jane@example.com"

    def test_stranger_cannot_read(self, checkout, carts, orders, make_product, user_id, other_user_id, address) -> None:
        _, order = _place(checkout, carts, make_product, user_id, address)
        with pytest.raises(Forbidden):
            orders.get_for_user(order["id"], {"id": other_user_id, "role": "user"})

    def test_bad_id_is_not_found(self, orders) -> None:
        with pytest.raises(NotFound):
            orders.get("not-an-object-id")

    def test_cancel_restores_stock(self, checkout, carts, orders, catalog, make_product, user_id, address) -> None:
        pid, order = _place(checkout, carts, make_product, user_id, address, stock=5)
        assert catalog.get_product(pid)["stock"] == 4

        cancelled = orders.cancel(order["id"], {"id": user_id, "role": "user"})
        assert cancelled["status"] == "cancelled"
        assert catalog.get_product(pid)["stock"] == 5

    @pytest.mark.parametrize("status", ["delivered", "cancelled"])
    def test_terminal_orders_cannot_be_cancelled(self, checkout, carts, orders, catalog, make_product, user_id, address, status) -> None:
        pid, order = _place(checkout, carts, make_product, user_id, address, stock=5)
        orders.update_status(order["id"], status)
        with pytest.raises(OrderNotCancellable):
            orders.cancel(order["id"], {"id": user_id, "role": "user"})
        assert catalog.get_product(pid)["stock"] == 4
        assert orders.get(order["id"])["status"] == status

    def test_only_owner_cancels(self, checkout, carts, orders, make_product, user_id, admin_id, address) -> None:
        _, order = _place(checkout, carts, make_product, user_id, address)
        with pytest.raises(Forbidden):
            orders.cancel(order["id"], {"id": admin_id, "role": "admin"})

    def test_status_update_any_direction_by_default(self, checkout, carts, orders, make_product, user_id, address) -> None:
        _, order = _place(checkout, carts, make_product, user_id, address)
        shipped = orders.update_status(order["id"], "shipped", tracking_number=" TRK123 ", forward_only=False)
        assert shipped["tracking_number"] == "TRK123"
        back = orders.update_status(order["id"], "pending", forward_only=False)
        assert back["status"] == "pending"
        assert back["tracking_number"] == "TRK123"

    def test_delivered_stamps_delivery_time(self, checkout, carts, orders, make_product, user_id, address) -> None:
        _, order = _place(checkout, carts, make_product, user_id, address)
        assert order.get("delivered_at") is None
        delivered = orders.update_status(order["id"], "delivered")
        assert isinstance(delivered["delivered_at"], datetime)

    def test_forward_only_rejects_backward_move(self, checkout, carts, orders, make_product, user_id, address) -> None:
        _, order = _place(checkout, carts, make_product, user_id, address)
        orders.update_status(order["id"], "shipped", forward_only=True)
        with pytest.raises(InvalidStatusTransition):
            orders.update_status(order["id"], "processing", forward_only=True)

    def test_list_for_user_paginates_newest_first(self, checkout, carts, orders, make_product, user_id, address) -> None:
        numbers = [_place(checkout, carts, make_product, user_id, address)[1]["order_number"] for _ in range(3)]
        page1, pagination = orders.list_for_user(user_id, page=1, limit=2)
        assert len(page1) == 2
        assert pagination == {"current": 1, "pages": 2, "total": 3, "has_next": True, "has_prev": False}
        page2, pagination = orders.list_for_user(user_id, page=2, limit=2)
        assert len(page2) == 1
        assert pagination["has_next"] is False
        assert pagination["has_prev"] is True
        assert {o["order_number"] for o in page1 + page2} == set(numbers)

    def test_list_all_filters_by_status(self, checkout, carts, orders, make_product, user_id, address) -> None:
        _, first = _place(checkout, carts, make_product, user_id, address)
        _place(checkout, carts, make_product, user_id, address)
        orders.update_status(first["id"], "shipped")
        shipped, pagination = orders.list_all(status="shipped")
        assert [o["id"] for o in shipped] == [first["id"]]
        assert shipped[0]["user"]["name"] == "Jane Smith"
        assert pagination["total"] == 1

    def test_summary_counts_quantities(self) -> None:
        order = {
            "order_number": "LUX000001001",
            "items": [{"quantity": 2}, {"quantity": 3}],
            "total_price": 50.0,
            "status": "pending",
        }
        assert order_summary(order)["total_items"] == 5

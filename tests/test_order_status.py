from datetime import datetime, timezone

import pytest
from bson import ObjectId

from errors import InvalidTransitionError, NotFoundError, ValidationError
from orders import ORDER_TRANSITIONS, PAYMENT_TRANSITIONS, OrderService, check_transition


@pytest.fixture()
def service(stores):
    return OrderService(stores)


@pytest.fixture()
def order(stores, user):
    return stores.orders.insert({
        "user_id": user["id"],
        "products": [],
        "order_status": "Pending",
        "payment_status": "Pending",
        "tracking_number": None,
        "delivered_at": None,
        "subtotal_amount": 0.0,
        "shipping_cost": 0.0,
        "total_amount": 0.0,
    })


class TestTransitionTable:

    @pytest.mark.parametrize("current", list(ORDER_TRANSITIONS))
    def test_same_state_is_always_allowed(self, current):
        check_transition(ORDER_TRANSITIONS, "order status", current, current)

    @pytest.mark.parametrize("current", ["Pending", "Processing", "Shipped", "Delivered"])
    def test_cancel_and_return_reachable_from_non_terminal_states(self, current):
        check_transition(ORDER_TRANSITIONS, "order status", current, "Cancelled")
        check_transition(ORDER_TRANSITIONS, "order status", current, "Returned")

    @pytest.mark.parametrize("current, requested", [
        ("Shipped", "Processing"),
        ("Delivered", "Pending"),
        ("Cancelled", "Processing"),
        ("Returned", "Delivered"),
    ])
    def test_rejected_order_transitions(self, current, requested):
        with pytest.raises(InvalidTransitionError):
            check_transition(ORDER_TRANSITIONS, "order status", current, requested)

    def test_refunded_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            check_transition(PAYMENT_TRANSITIONS, "payment status", "Refunded", "Paid")


class TestUpdateStatus:

    def test_advances_status(self, service, order):
        updated = service.update_status(order["id"], order_status="Processing")
        assert updated["order_status"] == "Processing"

    def test_delivered_stamps_delivered_at(self, service, order):
        before = datetime.now(timezone.utc)
        updated = service.update_status(order["id"], order_status="Delivered")
        assert updated["delivered_at"] >= before

    def test_second_delivered_keeps_first_stamp(self, service, order):
        first = service.update_status(order["id"], order_status="Delivered")["delivered_at"]
        second = service.update_status(order["id"], order_status="Delivered")["delivered_at"]
        assert second == first

    def test_explicit_delivered_at_wins(self, service, order):
        when = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        updated = service.update_status(order["id"], order_status="Delivered", delivered_at=when)
        assert updated["delivered_at"] == when

    def test_tracking_number_without_status(self, service, order):
        updated = service.update_status(order["id"], tracking_number="KE123")
        assert updated["tracking_number"] == "KE123"
        assert updated["order_status"] == "Pending"

    def test_tracking_number_can_be_cleared(self, service, order):
        service.update_status(order["id"], tracking_number="KE123")
        assert service.update_status(order["id"], tracking_number=None)["tracking_number"] is None

    def test_invalid_status_value(self, service, order):
        with pytest.raises(ValidationError, match="Invalid order status"):
            service.update_status(order["id"], order_status="Lost")

    def test_disallowed_transition(self, service, order):
        service.update_status(order["id"], order_status="Cancelled")
        with pytest.raises(InvalidTransitionError, match="Cancelled to Shipped"):
            service.update_status(order["id"], order_status="Shipped")

    def test_enforcement_can_be_disabled(self, stores, order):
        service = OrderService(stores, enforce_transitions=False)
        service.update_status(order["id"], order_status="Cancelled")
        assert service.update_status(order["id"], order_status="Shipped")["order_status"] == "Shipped"

    def test_unknown_order(self, service):
        with pytest.raises(NotFoundError):
            service.update_status(str(ObjectId()), order_status="Processing")


class TestUpdatePaymentStatus:

    def test_marks_paid(self, service, order):
        assert service.update_payment_status(order["id"], "Paid")["payment_status"] == "Paid"

    def test_independent_of_order_status(self, service, order):
        service.update_status(order["id"], order_status="Cancelled")
        assert service.update_payment_status(order["id"], "Paid")["payment_status"] == "Paid"

    def test_invalid_value(self, service, order):
        with pytest.raises(ValidationError, match="Invalid payment status"):
            service.update_payment_status(order["id"], "Bounced")

    def test_refund_requires_payment(self, service, order):
        with pytest.raises(InvalidTransitionError):
            service.update_payment_status(order["id"], "Refunded")


class TestReads:

    def test_get_order_attaches_user_summary(self, service, order, user):
        found = service.get_order(order["id"])
        assert found["user"] == {"id": user["id"], "username": "wanjiru", "email": "wanjiru@example.com"}

    def test_user_orders_newest_first(self, service, stores, user, order):
        newer = stores.orders.insert({**order, "total_amount": 1.0})
        other = str(ObjectId())
        stores.orders.insert({**order, "user_id": other})
        ids = [o["id"] for o in service.list_user_orders(user["id"])]
        assert ids == [newer["id"], order["id"]]

    def test_list_orders_handles_missing_user(self, service, stores, order):
        stores.orders.insert({**order, "user_id": str(ObjectId())})
        summaries = [o["user"] for o in service.list_orders()]
        assert summaries[0] is None
        assert summaries[1]["username"] == "wanjiru"

    def test_reads_attach_live_product_to_each_line(self, service, stores, user, order, make_product):
        kept = make_product(name="Belt", price=15.0)
        gone = make_product(name="Wallet")
        lines = [
            {"product_id": kept["id"], "quantity": 1, "price_at_time_of_order": 12.0, "name_at_time_of_order": "Belt"},
            {"product_id": gone["id"], "quantity": 1, "price_at_time_of_order": 10.0, "name_at_time_of_order": "Wallet"},
        ]
        stores.orders.update(order["id"], {"products": lines})
        stores.products.delete(gone["id"])

        for found in (service.get_order(order["id"]), service.list_orders()[0],
                      service.list_user_orders(user["id"])[0]):
            first, second = found["products"]
            assert first["product"] == {"id": kept["id"], "name": "Belt", "image_url": kept["image_url"], "price": 15.0}
            assert first["price_at_time_of_order"] == 12.0
            assert second["product"] is None

    def test_malformed_order_id(self, service):
        with pytest.raises(ValidationError):
            service.get_order("42")

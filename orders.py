"""
Order creation and order lifecycle.

An order is built from line items that are re-checked against live stock,
priced from the product catalogue (never from client input), and frozen as
snapshots so later product edits do not leak into historical orders.

Stock is taken in two phases: every line is validated first, then each
line's stock is taken with a conditional update. If a conditional update
loses a race, the lines already taken in this request are restocked and the
order is not created.
"""
import math
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

import pydantic
import structlog
from pymongo.errors import PyMongoError

from database import utcnow, validate_object_id
from errors import InsufficientStockError, InvalidTransitionError, NotFoundError, ValidationError
from inventory import InventoryLedger
from schemas import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, ShippingInfo
from store import Stores

logger = structlog.get_logger(__name__)

PRICE_TOLERANCE = 0.01

ORDER_PRODUCT_FIELDS = ("name", "image_url", "price")

_UNSET = object()

ORDER_TRANSITIONS: Mapping[str, FrozenSet[str]] = {
    OrderStatus.PENDING.value: frozenset({"Processing", "Shipped", "Delivered", "Cancelled", "Returned"}),
    OrderStatus.PROCESSING.value: frozenset({"Shipped", "Delivered", "Cancelled", "Returned"}),
    OrderStatus.SHIPPED.value: frozenset({"Delivered", "Cancelled", "Returned"}),
    OrderStatus.DELIVERED.value: frozenset({"Cancelled", "Returned"}),
    OrderStatus.CANCELLED.value: frozenset(),
    OrderStatus.RETURNED.value: frozenset(),
}

PAYMENT_TRANSITIONS: Mapping[str, FrozenSet[str]] = {
    PaymentStatus.PENDING.value: frozenset({"Paid", "Failed"}),
    PaymentStatus.FAILED.value: frozenset({"Pending", "Paid"}),
    PaymentStatus.PAID.value: frozenset({"Refunded"}),
    PaymentStatus.REFUNDED.value: frozenset(),
}


def check_transition(table: Mapping[str, FrozenSet[str]], field: str, current: str, requested: str) -> None:
    """Raise unless `requested` is the current state or a permitted next state."""
    if requested == current:
        return
    if requested not in table.get(current, frozenset()):
        raise InvalidTransitionError(field, current, requested)


def _money(value: float) -> float:
    return round(value, 2)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class OrderBuilder:
    def __init__(self, stores: Stores):
        self.stores = stores
        self.ledger = InventoryLedger(stores.products)

    def create(
        self,
        user_id: str,
        items: List[Dict[str, Any]],
        shipping_info: Any,
        payment_method: str = PaymentMethod.COD.value,
        mpesa_number: Optional[str] = None,
        shipping_cost: float = 0.0,
        client_subtotal: Optional[float] = None,
        client_total: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Validate, price, take stock for, and persist a new order."""
        validate_object_id(user_id, "User ID")
        if not items:
            raise ValidationError("No order items")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unsupported payment method: {payment_method}.")
        if not _is_number(shipping_cost) or shipping_cost < 0:
            raise ValidationError("Shipping cost must be a non-negative number.")
        try:
            shipping = ShippingInfo.model_validate(shipping_info)
        except pydantic.ValidationError:
            raise ValidationError("Shipping info requires full_name, phone, county and pickup_station.")

        if not self.stores.users.get(user_id):
            raise NotFoundError("User not found.")

        lines, subtotal = self._check_items(items)
        self._take_stock(lines)

        subtotal = _money(subtotal)
        total = _money(subtotal + shipping_cost)
        self._compare_client_amounts(user_id, subtotal, total, client_subtotal, client_total)

        order = Order(
            user_id=user_id,
            products=lines,
            shipping_info=shipping,
            payment_method=method,
            mpesa_number=mpesa_number if method is PaymentMethod.MPESA else None,
            payment_status=PaymentStatus.PENDING,
            subtotal_amount=subtotal,
            shipping_cost=_money(shipping_cost),
            total_amount=total,
            order_status=OrderStatus.PENDING,
        )
        try:
            created = self.stores.orders.insert(order.model_dump())
        except PyMongoError:
            self._return_stock(lines)
            raise

        self._clear_cart(user_id)
        logger.info("order_created", order_id=created["id"], user_id=user_id, total=total)
        return created

    def _check_items(self, items: List[Dict[str, Any]]) -> Tuple[List[OrderItem], float]:
        requested: Dict[str, int] = {}
        lines: List[OrderItem] = []
        subtotal = 0.0
        for item in items:
            product_id = item.get("product_id")
            validate_object_id(product_id, "Product ID")
            quantity = item.get("quantity")
            if not _is_number(quantity) or quantity < 1 or int(quantity) != quantity:
                raise ValidationError(f"Quantity for product ID {product_id} must be a whole number of at least 1.")
            quantity = int(quantity)

            product = self.ledger.get_product(product_id)
            requested[product_id] = requested.get(product_id, 0) + quantity
            available = int(product.get("stock", 0))
            if requested[product_id] > available:
                raise InsufficientStockError(product["name"], available, requested[product_id])

            live_price = float(product["price"])
            client_price = item.get("price")
            if _is_number(client_price) and abs(live_price - client_price) > PRICE_TOLERANCE:
                logger.warning("price_mismatch", product_id=product_id, product_name=product["name"],
                               client_price=client_price, live_price=live_price)

            subtotal += live_price * quantity
            lines.append(OrderItem(
                product_id=product_id,
                quantity=quantity,
                price_at_time_of_order=live_price,
                name_at_time_of_order=product["name"],
                image_url_at_time_of_order=product.get("image_url") or "",
                size_at_time_of_order=item.get("size") or product.get("size") or "N/A",
                color_at_time_of_order=item.get("color") or product.get("color") or "N/A",
            ))
        return lines, subtotal

    def _take_stock(self, lines: List[OrderItem]) -> None:
        taken: List[OrderItem] = []
        try:
            for line in lines:
                self.ledger.decrement(line.product_id, line.quantity)
                taken.append(line)
        except (InsufficientStockError, NotFoundError, PyMongoError):
            self._return_stock(taken)
            raise

    def _return_stock(self, lines: List[OrderItem]) -> None:
        for line in lines:
            self.ledger.restock(line.product_id, line.quantity)

    def _compare_client_amounts(self, user_id, subtotal, total, client_subtotal, client_total) -> None:
        if _is_number(client_subtotal) and abs(client_subtotal - subtotal) > PRICE_TOLERANCE:
            logger.warning("subtotal_mismatch", user_id=user_id, client_subtotal=client_subtotal, subtotal=subtotal)
        if _is_number(client_total) and abs(client_total - total) > PRICE_TOLERANCE:
            logger.warning("total_mismatch", user_id=user_id, client_total=client_total, total=total)

    def _clear_cart(self, user_id: str) -> None:
        # Best effort: the order already exists.
        try:
            self.stores.carts.delete_by_user(user_id)
        except PyMongoError as exc:
            logger.warning("cart_clear_failed", user_id=user_id, error=str(exc))


class OrderService:
    """Order reads and status changes."""

    def __init__(self, stores: Stores, enforce_transitions: bool = True):
        self.stores = stores
        self.enforce_transitions = enforce_transitions

    def _user_summary(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.stores.users.get(user_id) if user_id else None
        if not user:
            return None
        return {"id": user["id"], "username": user.get("username"), "email": user.get("email")}

    def _load(self, order_id: str) -> Dict[str, Any]:
        validate_object_id(order_id, "Order ID")
        order = self.stores.orders.get(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _populate_lines(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Attach the live product to each line next to its snapshot; None once deleted."""
        lines = []
        for line in order.get("products", []):
            product = self.stores.products.get(line["product_id"])
            if product:
                product = {"id": product["id"], **{f: product.get(f) for f in ORDER_PRODUCT_FIELDS}}
            lines.append({**line, "product": product})
        return {**order, "products": lines}

    def get_order(self, order_id: str) -> Dict[str, Any]:
        order = self._load(order_id)
        return {**self._populate_lines(order), "user": self._user_summary(order["user_id"])}

    def list_orders(self) -> List[Dict[str, Any]]:
        return [{**self._populate_lines(o), "user": self._user_summary(o["user_id"])}
                for o in self.stores.orders.list_all()]

    def list_user_orders(self, user_id: str) -> List[Dict[str, Any]]:
        validate_object_id(user_id, "User ID")
        return [self._populate_lines(o) for o in self.stores.orders.list_by("user_id", user_id)]

    def update_status(
        self,
        order_id: str,
        order_status: Optional[str] = None,
        tracking_number: Any = _UNSET,
        delivered_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        order = self._load(order_id)
        changes: Dict[str, Any] = {}

        if order_status:
            try:
                order_status = OrderStatus(order_status).value
            except ValueError:
                raise ValidationError("Invalid order status")
            if self.enforce_transitions:
                check_transition(ORDER_TRANSITIONS, "order status", order["order_status"], order_status)
            changes["order_status"] = order_status

        if tracking_number is not _UNSET:
            changes["tracking_number"] = tracking_number

        if delivered_at:
            changes["delivered_at"] = delivered_at
        elif order_status == OrderStatus.DELIVERED.value and not order.get("delivered_at"):
            changes["delivered_at"] = utcnow()

        if not changes:
            return order
        updated = self.stores.orders.update(order_id, changes)
        logger.info("order_status_updated", order_id=order_id, **{k: str(v) for k, v in changes.items()})
        return updated

    def update_payment_status(self, order_id: str, payment_status: Optional[str]) -> Dict[str, Any]:
        try:
            payment_status = PaymentStatus(payment_status).value
        except ValueError:
            raise ValidationError("Invalid payment status")
        order = self._load(order_id)
        if self.enforce_transitions:
            check_transition(PAYMENT_TRANSITIONS, "payment status", order["payment_status"], payment_status)
        updated = self.stores.orders.update(order_id, {"payment_status": payment_status})
        logger.info("payment_status_updated", order_id=order_id, payment_status=payment_status)
        return updated

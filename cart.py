"""
Shopping cart rules.

A user owns at most one cart. Line items are unique per product and always
hold a quantity of at least one. Every mutation is checked against live
stock before it is written, so a failed mutation leaves the cart untouched.
"""
import math
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

import structlog

from database import validate_object_id
from errors import InsufficientStockError, NotFoundError, ValidationError
from inventory import InventoryLedger
from schemas import Cart, CartItem
from store import CartStore, ProductStore

logger = structlog.get_logger(__name__)

POPULATED_FIELDS = ("name", "price", "image_url", "stock", "size", "color")


class CartLookup(NamedTuple):
    """Result of reading a cart: `found` is False for the synthetic empty cart."""
    found: bool
    cart: Dict[str, Any]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def require_quantity(value: Any, minimum: int, message: str) -> int:
    if not _is_number(value) or value < minimum or int(value) != value:
        raise ValidationError(message)
    return int(value)


class CartService:
    def __init__(self, carts: CartStore, products: ProductStore):
        self.carts = carts
        self.products = products
        self.ledger = InventoryLedger(products)

    def populate(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        """Attach the live product fields to each line item for display."""
        items = []
        for item in cart.get("products", []):
            product = self.products.get(item["product_id"])
            if product:
                product = {"id": product["id"], **{f: product.get(f) for f in POPULATED_FIELDS}}
            items.append({**item, "product": product})
        return {**cart, "products": items}

    def get_cart(self, user_id: str) -> CartLookup:
        validate_object_id(user_id, "User ID")
        cart = self.carts.find_by_user(user_id)
        if not cart:
            return CartLookup(False, Cart(user=user_id).model_dump())
        return CartLookup(True, self.populate(cart))

    def add_item(self, user_id: str, product_id: str, quantity: Any) -> Dict[str, Any]:
        """Add `quantity` units of a product, merging with an existing line item."""
        validate_object_id(user_id, "User ID")
        validate_object_id(product_id, "Product ID")
        quantity = require_quantity(quantity, 1, "Quantity must be a positive number (at least 1).")

        product = self.ledger.get_product(product_id)

        existing = 0
        cart = self.carts.find_by_user(user_id)
        if cart:
            for item in cart.get("products", []):
                if item["product_id"] == product_id:
                    existing = item["quantity"]
                    break

        self.ledger.check_available(product_id, existing + quantity)

        price = float(product["price"])
        updated = self.carts.increment_item(user_id, product_id, quantity, price)
        if updated is None:
            updated = self.carts.push_item(user_id, product_id, quantity, price)
        logger.info("cart_item_added", user_id=user_id, product_id=product_id, quantity=quantity)
        return self.populate(updated)

    def validate_items(self, items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Check submitted line items in order and merge repeats of the same product.

        Items with quantity 0 survive validation so the caller can treat them
        as removals.
        """
        merged: Dict[str, Dict[str, Any]] = {}
        for item in items:
            product_id = item.get("product_id")
            if not product_id:
                raise ValidationError("Product ID is required for all cart items.")
            validate_object_id(product_id, "Product ID")
            quantity = require_quantity(
                item.get("quantity"), 0,
                f"Quantity for product ID {product_id} must be a number and at least 0.",
            )
            price = item.get("price_at_time_of_addition")
            if not _is_number(price) or price < 0:
                raise ValidationError(
                    f"Price at time of addition is required and must be a non-negative number for product ID {product_id}."
                )
            product = self.ledger.get_product(product_id)

            line = merged.setdefault(product_id, {"product_id": product_id, "quantity": 0})
            line["quantity"] += quantity
            line["price_at_time_of_addition"] = float(price)

            available = int(product.get("stock", 0))
            if line["quantity"] > available:
                raise InsufficientStockError(product["name"], available, line["quantity"])
        return list(merged.values())

    def set_items(self, user_id: str, items: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
        """Replace the whole cart; zero-quantity items are dropped."""
        validate_object_id(user_id, "User ID")
        if not isinstance(items, list):
            raise ValidationError("Products must be an array.")
        validated = self.validate_items(items)
        to_save = [CartItem(**item).model_dump() for item in validated if item["quantity"] > 0]
        cart = self.carts.replace_items(user_id, to_save)
        logger.info("cart_replaced", user_id=user_id, items=len(to_save))
        return self.populate(cart)

    def clear_cart(self, user_id: str) -> None:
        validate_object_id(user_id, "User ID")
        if not self.carts.delete_by_user(user_id):
            raise NotFoundError("Cart not found for this user.")
        logger.info("cart_cleared", user_id=user_id)

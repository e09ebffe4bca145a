"""Stock checks and stock movements for products."""
from typing import Any, Dict

import structlog

from database import validate_object_id
from errors import InsufficientStockError, NotFoundError
from store import ProductStore

logger = structlog.get_logger(__name__)


class InventoryLedger:
    def __init__(self, products: ProductStore):
        self.products = products

    def get_product(self, product_id: str) -> Dict[str, Any]:
        validate_object_id(product_id, "Product ID")
        product = self.products.get(product_id)
        if not product:
            raise NotFoundError(f"Product with ID {product_id} not found.", product_id=product_id)
        return product

    def check_available(self, product_id: str, quantity: int) -> Dict[str, Any]:
        """Return the product if at least `quantity` units are in stock."""
        product = self.get_product(product_id)
        available = int(product.get("stock", 0))
        if quantity > available:
            raise InsufficientStockError(product["name"], available, quantity)
        return product

    def decrement(self, product_id: str, quantity: int) -> None:
        if self.products.decrement_stock(product_id, quantity):
            return
        # The conditional update missed: either the product is gone or
        # someone else took the stock first.
        product = self.get_product(product_id)
        raise InsufficientStockError(product["name"], int(product.get("stock", 0)), quantity)

    def restock(self, product_id: str, quantity: int) -> None:
        if not self.products.increment_stock(product_id, quantity):
            logger.warning("restock_missed", product_id=product_id, quantity=quantity)
            return
        logger.info("stock_restocked", product_id=product_id, quantity=quantity)

"""
Error taxonomy for the shop API.

Every business failure is a ShopError subclass carrying the HTTP status it
maps to. The handlers registered in main.py render them as JSON bodies of
the form {"message": ..., **details}.
"""
from typing import Any, Dict


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, **self.details}


class ValidationError(ShopError):
    """Malformed identifier, missing field or out-of-range number."""
    status_code = 400


class NotFoundError(ShopError):
    status_code = 404


class InsufficientStockError(ShopError):
    status_code = 400

    def __init__(self, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}.",
            product_name=product_name,
            available=available,
            requested=requested,
        )
        self.product_name = product_name
        self.available = available
        self.requested = requested


class ConflictError(ShopError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, field: str, current: str, requested: str):
        super().__init__(
            f"Cannot change {field} from {current} to {requested}.",
            current=current,
            requested=requested,
        )


class AuthenticationError(ShopError):
    status_code = 401

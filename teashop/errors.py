"""Errors raised by the storefront core.

Each error knows the HTTP status it maps to; ``main.py`` turns any of them into
an ``{"error": ..., "details": ...}`` JSON body.
"""

from typing import Optional


class ShopError(Exception):
    """Base error for the storefront."""

    status_code = 500
    error = "internal error"

    def __init__(self, details: Optional[str] = None) -> None:
        super().__init__(details or self.error)
        self.details = details


class InvalidInput(ShopError):
    status_code = 400
    error = "invalid input"


class AuthError(ShopError):
    status_code = 401
    error = "unauthorized"


class Forbidden(ShopError):
    status_code = 403
    error = "forbidden"


class ProductNotFound(ShopError):
    status_code = 404
    error = "product not found"

    def __init__(self, product_id: int) -> None:
        super().__init__(f"product {product_id} does not exist")
        self.product_id = product_id


class OrderNotFound(ShopError):
    status_code = 404
    error = "order not found"

    def __init__(self, order_id: int) -> None:
        super().__init__(f"order {order_id} does not exist")
        self.order_id = order_id


class InsufficientStock(ShopError):
    status_code = 409
    error = "insufficient stock"

    def __init__(self, product_id: int, requested: int, available: int) -> None:
        super().__init__(f"product {product_id}: requested {requested}, available {available}")
        self.product_id = product_id
        self.requested = requested
        self.available = available


class OrderCreationFailed(ShopError):
    status_code = 500
    error = "order creation failed"


class CategoryNotFound(ShopError):
    status_code = 404
    error = "category not found"

    def __init__(self, category_id: int) -> None:
        super().__init__(f"category {category_id} does not exist")
        self.category_id = category_id


class CartItemNotFound(ShopError):
    status_code = 404
    error = "cart item not found"

    def __init__(self, product_id: int) -> None:
        super().__init__(f"product {product_id} is not in the cart")
        self.product_id = product_id

"""
Cart domain exceptions.

Each exception carries the HTTP status it is surfaced with; the handler
registered in ``app.main`` turns them into JSON error responses.
"""
from typing import Any, Dict, Optional

from fastapi import status


class CartError(Exception):
    """Base exception for cart operations."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)

    def extra(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "code": self.code}
        payload.update(self.extra())
        return payload


class InvalidIdentity(CartError):
    """Raised when neither a user id nor a session id identifies the cart."""

    def __init__(self, message: str = "User ID or session ID required"):
        super().__init__(message=message, code="INVALID_IDENTITY")


class Unauthorized(CartError):
    """Raised when an operation needs an authenticated user."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message, code="UNAUTHORIZED")


class ItemNotFound(CartError):
    """Raised when an update targets a book that is not in the cart."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, book_id: str):
        super().__init__(
            message=f"Item not found in cart: {book_id}",
            code="ITEM_NOT_FOUND"
        )
        self.book_id = book_id

    def extra(self) -> Dict[str, Any]:
        return {"book_id": self.book_id}


class InvalidQuantity(CartError):
    """Raised when a line quantity would leave the allowed range."""

    def __init__(self, book_id: str, quantity: int, maximum: int):
        super().__init__(
            message=f"Quantity for {book_id} must be between 1 and {maximum}, got {quantity}",
            code="INVALID_QUANTITY"
        )
        self.book_id = book_id
        self.quantity = quantity
        self.maximum = maximum

    def extra(self) -> Dict[str, Any]:
        return {"book_id": self.book_id, "quantity": self.quantity, "maximum": self.maximum}


class InvalidPrice(CartError):
    """Raised when a new cart line has no usable price."""

    def __init__(self, book_id: str):
        super().__init__(
            message=f"A non-negative price is required to add {book_id}",
            code="INVALID_PRICE"
        )
        self.book_id = book_id

    def extra(self) -> Dict[str, Any]:
        return {"book_id": self.book_id}


class BookUnavailable(CartError):
    """Raised when a book is missing from the catalog or cannot be sold."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, book_id: str):
        super().__init__(
            message="Book not found or unavailable",
            code="BOOK_UNAVAILABLE"
        )
        self.book_id = book_id

    def extra(self) -> Dict[str, Any]:
        return {"book_id": self.book_id}


class InsufficientStock(CartError):
    """Raised when a requested quantity exceeds the book's stock."""

    def __init__(self, book_id: str, requested: int, available: int):
        super().__init__(
            message=f"Only {available} items available in stock",
            code="INSUFFICIENT_STOCK"
        )
        self.book_id = book_id
        self.requested = requested
        self.available = available

    def extra(self) -> Dict[str, Any]:
        return {
            "book_id": self.book_id,
            "requested": self.requested,
            "available_stock": self.available
        }


class StorageFailure(CartError):
    """Raised when reading or writing a cart document fails."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, action: str):
        super().__init__(
            message=f"Cart storage failure while {action}",
            code="STORAGE_FAILURE"
        )
        self.action = action


class CartNotFound(CartError):
    """Raised when an operation needs an existing cart and there is none."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Cart not found"):
        super().__init__(message=message, code="CART_NOT_FOUND")


class CartConflict(CartError):
    """Raised when a cart keeps changing underneath a write."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, cart_id: Optional[str]):
        super().__init__(
            message="Cart was modified concurrently, please retry",
            code="CART_CONFLICT"
        )
        self.cart_id = cart_id

    def extra(self) -> Dict[str, Any]:
        return {"cart_id": self.cart_id}

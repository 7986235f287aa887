"""
Pre-checkout revalidation of cart lines against the live catalog.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from app.core.config import settings
from app.models.book import Book
from app.models.cart import Cart
from app.schemas.cart import (
    CartIssue,
    InsufficientStockIssue,
    PriceChangedIssue,
    UnavailableIssue
)

logger = logging.getLogger(__name__)

BookLookup = Callable[[str], Awaitable[Optional[Book]]]


class CartValidator:
    """
    Compares each cart line with the current book record.

    The lookup is injected so callers decide where books come from
    (``BookCatalog.get_book_by_id`` in the API). Validation never changes
    the cart; the caller decides whether to block checkout.
    """

    def __init__(self, get_book: BookLookup, price_tolerance: float = settings.PRICE_TOLERANCE):
        self.get_book = get_book
        self.price_tolerance = price_tolerance

    async def validate_items(self, cart: Cart) -> List[CartIssue]:
        issues: List[CartIssue] = []

        for item in cart.items:
            book = await self.get_book(item.book_id)

            if not book or not book.is_sellable:
                issues.append(UnavailableIssue(book_id=item.book_id))
            elif book.stock < item.quantity:
                issues.append(InsufficientStockIssue(
                    book_id=item.book_id,
                    available=book.stock,
                    requested=item.quantity,
                    message=f"Only {book.stock} items in stock, but {item.quantity} requested"
                ))
            elif abs(book.price - item.price) > self.price_tolerance:
                issues.append(PriceChangedIssue(
                    book_id=item.book_id,
                    old_price=item.price,
                    new_price=book.price
                ))

        if issues:
            logger.info(f"Cart {cart.id} has {len(issues)} validation issue(s)")
        return issues

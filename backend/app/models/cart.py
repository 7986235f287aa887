from datetime import datetime, timedelta
from typing import Dict, List, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.core.config import settings
from app.core.exceptions import InvalidPrice, InvalidQuantity, ItemNotFound
from app.utils.helpers import get_current_timestamp, object_id_to_str

MAX_ITEM_QUANTITY = settings.CART_MAX_ITEM_QUANTITY


def cart_expiry_from(now: datetime) -> datetime:
    """Sliding expiry applied to a cart touched at ``now``."""
    return now + timedelta(days=settings.CART_TTL_DAYS)


def _default_expiry() -> datetime:
    return cart_expiry_from(get_current_timestamp())


class CartItem(BaseModel):
    """Item in a shopping cart. The price is a snapshot taken when added."""
    book_id: str
    quantity: int = Field(ge=1, le=MAX_ITEM_QUANTITY)
    price: float = Field(ge=0)
    added_at: datetime = Field(default_factory=get_current_timestamp)

    @field_validator("book_id", mode="before")
    @classmethod
    def normalize_book_id(cls, value):
        return object_id_to_str(value)

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity


class Cart(BaseModel):
    """
    Shopping cart owned by either a user or a guest session.

    total_items and total_price are derived from items. Every mutation method
    ends by recomputing them, and they are recomputed again whenever a cart is
    built from stored data, so values supplied by callers are never trusted.

    version counts stored writes and guards saves against concurrent changes.
    """
    id: Optional[str] = Field(None, alias="_id")
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0.0
    guest_email: Optional[EmailStr] = None
    expires_at: datetime = Field(default_factory=_default_expiry)
    created_at: datetime = Field(default_factory=get_current_timestamp)
    updated_at: datetime = Field(default_factory=get_current_timestamp)
    version: int = Field(default=0, ge=0)

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def normalize_ids(cls, value):
        return object_id_to_str(value)

    @model_validator(mode="after")
    def check_owner_and_totals(self) -> "Cart":
        if bool(self.user_id) == bool(self.session_id):
            raise ValueError("A cart must be owned by exactly one of user_id or session_id")
        self.recompute_totals()
        return self

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "session_id": "guest-3f2a9c",
                "items": [
                    {
                        "book_id": "665f1c2e9b1e8a3d4c5b6a70",
                        "quantity": 2,
                        "price": 39.99,
                        "added_at": "2024-01-01T00:00:00"
                    }
                ],
                "total_items": 2,
                "total_price": 79.98,
                "expires_at": "2024-01-31T00:00:00"
            }
        }

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def get_item(self, book_id) -> Optional[CartItem]:
        book_id = str(book_id)
        for item in self.items:
            if item.book_id == book_id:
                return item
        return None

    def recompute_totals(self) -> None:
        """Collapse duplicate lines and rebuild the totals from scratch."""
        lines: Dict[str, CartItem] = {}
        for item in self.items:
            existing = lines.get(item.book_id)
            if existing is None:
                lines[item.book_id] = item
            else:
                existing.quantity = min(existing.quantity + item.quantity, MAX_ITEM_QUANTITY)
        self.items = list(lines.values())
        self.total_items = sum(item.quantity for item in self.items)
        self.total_price = round(sum(item.subtotal for item in self.items), 2)

    def _touch(self) -> "Cart":
        # Runs at the end of every mutation
        now = get_current_timestamp()
        self.recompute_totals()
        if self.items:
            self.expires_at = cart_expiry_from(now)
        self.updated_at = now
        return self

    @staticmethod
    def _check_quantity(book_id: str, quantity: int) -> None:
        if quantity < 1 or quantity > MAX_ITEM_QUANTITY:
            raise InvalidQuantity(book_id, quantity, MAX_ITEM_QUANTITY)

    def add_item(self, book_id, quantity: int = 1, price: Optional[float] = None) -> "Cart":
        """
        Add a book to the cart.

        An existing line has its quantity increased and, when a price is
        given, its price snapshot replaced. A new line needs a price.
        """
        book_id = str(book_id)
        if quantity < 1:
            raise InvalidQuantity(book_id, quantity, MAX_ITEM_QUANTITY)
        if price is not None and price < 0:
            raise InvalidPrice(book_id)

        item = self.get_item(book_id)
        if item:
            new_quantity = item.quantity + quantity
            self._check_quantity(book_id, new_quantity)
            item.quantity = new_quantity
            if price is not None:
                item.price = price
        else:
            self._check_quantity(book_id, quantity)
            if price is None:
                raise InvalidPrice(book_id)
            self.items.append(CartItem(book_id=book_id, quantity=quantity, price=price))

        return self._touch()

    def update_item(self, book_id, quantity: int) -> "Cart":
        """Set a line's quantity. Zero or less removes the line."""
        book_id = str(book_id)
        item = self.get_item(book_id)
        if not item:
            raise ItemNotFound(book_id)

        if quantity <= 0:
            return self.remove_item(book_id)

        self._check_quantity(book_id, quantity)
        item.quantity = quantity
        return self._touch()

    def remove_item(self, book_id) -> "Cart":
        book_id = str(book_id)
        if not self.get_item(book_id):
            return self
        self.items = [item for item in self.items if item.book_id != book_id]
        return self._touch()

    def clear(self) -> "Cart":
        self.items = []
        return self._touch()

    def merge(self, other: "Cart") -> "Cart":
        """
        Merge another cart's items into this one.

        Shared books have their quantities summed (capped at the per-item
        maximum) and keep this cart's price; other lines are copied with their
        original price and added_at.
        """
        for other_item in other.items:
            existing = self.get_item(other_item.book_id)
            if existing:
                existing.quantity = min(existing.quantity + other_item.quantity, MAX_ITEM_QUANTITY)
            else:
                self.items.append(other_item.model_copy())
        return self._touch()

    def claim(self, user_id: str) -> "Cart":
        """Hand a guest cart over to an authenticated user."""
        self.user_id = str(user_id)
        self.session_id = None
        self.updated_at = get_current_timestamp()
        return self

    def set_guest_email(self, guest_email: str) -> "Cart":
        self.guest_email = guest_email
        self.updated_at = get_current_timestamp()
        return self

    def to_order_items(self) -> List[dict]:
        """Order line items for checkout. Does not modify the cart."""
        return [
            {
                "book_id": item.book_id,
                "quantity": item.quantity,
                "price": item.price,
                "total_price": round(item.subtotal, 2)
            }
            for item in self.items
        ]

    def to_document(self) -> dict:
        """MongoDB document for this cart, without _id and unset fields."""
        return self.model_dump(exclude={"id"}, exclude_none=True)

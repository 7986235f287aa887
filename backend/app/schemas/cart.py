from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.cart import Cart, MAX_ITEM_QUANTITY
from app.utils.helpers import parse_object_id


class CartIdentity(BaseModel):
    """Who a cart request is for. user_id wins over session_id."""
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class AddItemRequest(BaseModel):
    """Schema for adding a book to the cart."""
    book_id: str
    quantity: int = Field(default=1, ge=1, le=MAX_ITEM_QUANTITY)

    @field_validator("book_id")
    @classmethod
    def check_book_id(cls, value: str) -> str:
        if parse_object_id(value) is None:
            raise ValueError("Valid book ID required")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "book_id": "665f1c2e9b1e8a3d4c5b6a70",
                "quantity": 2
            }
        }


class UpdateItemRequest(BaseModel):
    """Schema for setting a cart line's quantity. 0 removes the line."""
    quantity: int = Field(ge=0, le=MAX_ITEM_QUANTITY)

    class Config:
        json_schema_extra = {
            "example": {
                "quantity": 3
            }
        }


class MergeCartRequest(BaseModel):
    """Schema for merging a guest cart into the signed-in user's cart."""
    session_id: str = Field(min_length=1)


class GuestEmailRequest(BaseModel):
    """Schema for attaching a contact email to a guest cart."""
    guest_email: EmailStr


class CartItemResponse(BaseModel):
    """Schema for cart item response."""
    book_id: str
    quantity: int
    price: float
    subtotal: float
    added_at: datetime


class CartResponse(BaseModel):
    """Schema for cart response."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    items: List[CartItemResponse]
    total_items: int
    total_price: float
    guest_email: Optional[str] = None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_cart(cls, cart: Cart) -> "CartResponse":
        return cls(
            id=cart.id,
            user_id=cart.user_id,
            session_id=cart.session_id,
            items=[
                CartItemResponse(
                    book_id=item.book_id,
                    quantity=item.quantity,
                    price=item.price,
                    subtotal=round(item.subtotal, 2),
                    added_at=item.added_at
                )
                for item in cart.items
            ],
            total_items=cart.total_items,
            total_price=cart.total_price,
            guest_email=cart.guest_email,
            expires_at=cart.expires_at,
            created_at=cart.created_at,
            updated_at=cart.updated_at
        )


class IssueKind(str, Enum):
    """Kinds of drift between a cart line and the live catalog."""
    UNAVAILABLE = "UNAVAILABLE"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    PRICE_CHANGED = "PRICE_CHANGED"


class UnavailableIssue(BaseModel):
    kind: Literal[IssueKind.UNAVAILABLE] = IssueKind.UNAVAILABLE
    book_id: str
    message: str = "Book no longer available"


class InsufficientStockIssue(BaseModel):
    kind: Literal[IssueKind.INSUFFICIENT_STOCK] = IssueKind.INSUFFICIENT_STOCK
    book_id: str
    available: int
    requested: int
    message: str = ""


class PriceChangedIssue(BaseModel):
    kind: Literal[IssueKind.PRICE_CHANGED] = IssueKind.PRICE_CHANGED
    book_id: str
    old_price: float
    new_price: float
    message: str = "Price has changed"


CartIssue = Annotated[
    Union[UnavailableIssue, InsufficientStockIssue, PriceChangedIssue],
    Field(discriminator="kind")
]


class CartDetailResponse(BaseModel):
    """Cart plus any revalidation issues found."""
    cart: CartResponse
    issues: List[CartIssue] = Field(default_factory=list)


class CartActionResponse(BaseModel):
    """Result of a cart mutation."""
    message: str
    cart: CartResponse


class MergeCartResponse(BaseModel):
    """Result of merging a guest cart."""
    message: str
    merged: bool
    cart: CartResponse


class OrderItemResponse(BaseModel):
    """Order line produced from a cart line."""
    book_id: str
    quantity: int
    price: float
    total_price: float


class CartValidationResponse(BaseModel):
    """Pre-checkout revalidation result."""
    valid: bool
    issues: List[CartIssue]
    total_items: int
    total_price: float
    order_items: List[OrderItemResponse]


class CartSummary(BaseModel):
    """Totals shown at checkout."""
    subtotal: float
    tax: float
    shipping: float
    total: float
    item_count: int
    free_shipping_eligible: bool
    free_shipping_threshold: float


class CartSummaryResponse(BaseModel):
    summary: CartSummary

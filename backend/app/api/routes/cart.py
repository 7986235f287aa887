from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.api.deps import get_db, get_book_catalog, get_cart_identity
from app.schemas.cart import (
    AddItemRequest,
    UpdateItemRequest,
    MergeCartRequest,
    GuestEmailRequest,
    CartIdentity,
    CartResponse,
    CartDetailResponse,
    CartActionResponse,
    MergeCartResponse,
    CartValidationResponse,
    CartSummaryResponse
)
from app.services.book_catalog import BookCatalog
from app.services.cart_service import CartService

router = APIRouter()


@router.get("", response_model=CartDetailResponse)
async def get_cart(
    identity: CartIdentity = Depends(get_cart_identity),
    catalog: BookCatalog = Depends(get_book_catalog),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Get the current cart, creating it on first visit.

    Also returns revalidation issues (availability, stock, price changes).
    """
    cart = await CartService.resolve(identity.user_id, identity.session_id, db)
    issues = await CartService.validate_items(cart, catalog)

    return CartDetailResponse(cart=CartResponse.from_cart(cart), issues=issues)


@router.post("/items", response_model=CartActionResponse)
async def add_to_cart(
    request: AddItemRequest,
    identity: CartIdentity = Depends(get_cart_identity),
    catalog: BookCatalog = Depends(get_book_catalog),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Add a book to the cart.

    Validates:
    - Book exists and is active
    - Sufficient stock available

    If the book is already in the cart, increases its quantity.
    """
    cart = await CartService.add_item(
        user_id=identity.user_id,
        session_id=identity.session_id,
        book_id=request.book_id,
        quantity=request.quantity,
        catalog=catalog,
        db=db
    )

    return CartActionResponse(message="Item added to cart", cart=CartResponse.from_cart(cart))


@router.put("/items/{book_id}", response_model=CartActionResponse)
async def update_cart_item(
    book_id: str,
    request: UpdateItemRequest,
    identity: CartIdentity = Depends(get_cart_identity),
    catalog: BookCatalog = Depends(get_book_catalog),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Set the quantity of an item in the cart. A quantity of 0 removes it.
    """
    cart = await CartService.update_item(
        user_id=identity.user_id,
        session_id=identity.session_id,
        book_id=book_id,
        quantity=request.quantity,
        catalog=catalog,
        db=db
    )

    message = "Item removed from cart" if request.quantity == 0 else "Cart updated"
    return CartActionResponse(message=message, cart=CartResponse.from_cart(cart))


@router.delete("/items/{book_id}", response_model=CartActionResponse)
async def remove_from_cart(
    book_id: str,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Remove an item from the cart. Removing a book that is not in it is a no-op.

    Returns 404 if there is no cart yet.
    """
    cart = await CartService.remove_item(identity.user_id, identity.session_id, book_id, db)
    return CartActionResponse(message="Item removed from cart", cart=CartResponse.from_cart(cart))


@router.delete("", response_model=CartActionResponse)
async def clear_cart(
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Clear all items from the cart. Returns 404 if there is no cart yet.
    """
    cart = await CartService.clear(identity.user_id, identity.session_id, db)
    return CartActionResponse(message="Cart cleared successfully", cart=CartResponse.from_cart(cart))


@router.post("/merge", response_model=MergeCartResponse)
async def merge_cart(
    request: MergeCartRequest,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Merge a guest session cart into the signed-in user's cart.

    Requires authentication.
    """
    cart, merged = await CartService.merge_guest_cart(identity.user_id, request.session_id, db)

    message = "Cart merged successfully" if merged else "No session cart to merge"
    return MergeCartResponse(message=message, merged=merged, cart=CartResponse.from_cart(cart))


@router.put("/guest-email", response_model=CartActionResponse)
async def set_guest_email(
    request: GuestEmailRequest,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Attach a contact email to a guest cart for guest checkout.
    """
    cart = await CartService.set_guest_email(
        identity.user_id,
        identity.session_id,
        str(request.guest_email),
        db
    )
    return CartActionResponse(message="Guest email saved", cart=CartResponse.from_cart(cart))


@router.get("/validate", response_model=CartValidationResponse)
async def validate_cart(
    identity: CartIdentity = Depends(get_cart_identity),
    catalog: BookCatalog = Depends(get_book_catalog),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Validate cart items before checkout (availability, stock, prices).

    The cart is not modified and never created here (404 without one). When
    valid, order_items can be handed to order creation as-is.
    """
    cart = await CartService.find_existing(identity.user_id, identity.session_id, db)
    issues = await CartService.validate_items(cart, catalog)

    return CartValidationResponse(
        valid=len(issues) == 0,
        issues=issues,
        total_items=cart.total_items,
        total_price=cart.total_price,
        order_items=cart.to_order_items()
    )


@router.get("/summary", response_model=CartSummaryResponse)
async def get_cart_summary(
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Get cart totals with tax and shipping. Returns 404 if there is no cart yet.
    """
    cart = await CartService.find_existing(identity.user_id, identity.session_id, db)
    return CartSummaryResponse(summary=CartService.get_summary(cart))

"""
Cart service - resolution, persistence and checkout helpers for carts.

Carts are loaded into the ``Cart`` model, changed in memory and written back
with a single update, so a failed write never leaves half-applied totals in
the database. Each write is conditioned on the version that was loaded; when
another request saved in between, the cart is reloaded and the change is
applied again.
"""
import logging
from typing import Awaitable, Callable, List, Optional, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.config import settings
from app.core.database import storage_errors
from app.core.exceptions import (
    BookUnavailable,
    CartConflict,
    CartError,
    CartNotFound,
    InsufficientStock,
    InvalidIdentity,
    ItemNotFound,
    StorageFailure,
    Unauthorized
)
from app.models.book import Book
from app.models.cart import Cart
from app.schemas.cart import CartIssue, CartSummary
from app.services.book_catalog import BookCatalog
from app.services.cart_validator import CartValidator
from app.utils.helpers import get_current_timestamp, parse_object_id

logger = logging.getLogger(__name__)

# Applies a change to a loaded cart; returns False when there is nothing to write
CartChange = Callable[[Cart], Awaitable[bool]]


class CartService:
    """Service for cart operations."""

    @staticmethod
    def _require_identity(user_id: Optional[str], session_id: Optional[str]) -> None:
        if not user_id and not session_id:
            raise InvalidIdentity()

    @staticmethod
    async def resolve(
        user_id: Optional[str],
        session_id: Optional[str],
        db: AsyncIOMotorDatabase
    ) -> Cart:
        """
        Find or create the one cart for this identity.

        A signed-in user without a cart takes over the guest cart of the
        session they arrived with, if there is one.
        """
        CartService._require_identity(user_id, session_id)

        if user_id:
            user_id = str(user_id)
            cart = await CartService._find_cart({"user_id": user_id}, db)
            if cart:
                return cart

            if session_id:
                claimed = await CartService._claim_guest_cart(user_id, session_id, db)
                if claimed:
                    return claimed

            return await CartService._find_or_create({"user_id": user_id}, db)

        return await CartService._find_or_create({"session_id": session_id}, db)

    @staticmethod
    async def find_existing(
        user_id: Optional[str],
        session_id: Optional[str],
        db: AsyncIOMotorDatabase
    ) -> Cart:
        """
        Look up the cart for this identity without creating or claiming one.

        A signed-in user without a cart of their own sees the guest cart of
        their session. Raises CartNotFound when neither exists.
        """
        CartService._require_identity(user_id, session_id)

        cart = None
        if user_id:
            cart = await CartService._find_cart({"user_id": str(user_id)}, db)
        if cart is None and session_id:
            cart = await CartService._find_cart({"session_id": session_id, "user_id": None}, db)

        if cart is None:
            raise CartNotFound()
        return cart

    @staticmethod
    async def _find_cart(query: dict, db: AsyncIOMotorDatabase) -> Optional[Cart]:
        with storage_errors("loading cart"):
            cart = await db.carts.find_one(query)
        return Cart.model_validate(cart) if cart else None

    @staticmethod
    async def _find_or_create(query: dict, db: AsyncIOMotorDatabase) -> Cart:
        """Atomic find-or-create through an upsert on the owner field."""
        on_insert = Cart(**query).to_document()
        for key in query:
            on_insert.pop(key, None)

        with storage_errors("creating cart"):
            try:
                result = await db.carts.update_one(
                    query,
                    {"$setOnInsert": on_insert},
                    upsert=True
                )
                if result.upserted_id is not None:
                    logger.info(f"Created cart {result.upserted_id} for {query}")
            except DuplicateKeyError:
                # A concurrent request inserted the same cart first
                logger.info(f"Lost cart creation race for {query}, using existing cart")

            cart = await db.carts.find_one(query)

        if not cart:
            raise StorageFailure(f"creating cart for {query}")
        return Cart.model_validate(cart)

    @staticmethod
    async def _claim_guest_cart(
        user_id: str,
        session_id: str,
        db: AsyncIOMotorDatabase
    ) -> Optional[Cart]:
        """Move a guest cart to a user. Returns None if there was none to claim."""
        with storage_errors("claiming guest cart"):
            try:
                cart = await db.carts.find_one_and_update(
                    {"session_id": session_id, "user_id": None},
                    {
                        "$set": {"user_id": user_id, "updated_at": get_current_timestamp()},
                        "$unset": {"session_id": ""},
                        "$inc": {"version": 1}
                    },
                    return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError:
                # The user got a cart of their own in the meantime
                return None

        if not cart:
            return None

        logger.info(f"User {user_id} claimed guest cart {cart['_id']}")
        return Cart.model_validate(cart)

    @staticmethod
    async def _write(cart: Cart, db: AsyncIOMotorDatabase) -> bool:
        """
        Write the cart's contents if it is still at the loaded version.

        Returns False when the stored cart moved on or is gone. Ownership is
        never changed here.
        """
        fields = {
            "items": [item.model_dump() for item in cart.items],
            "total_items": cart.total_items,
            "total_price": cart.total_price,
            "expires_at": cart.expires_at,
            "updated_at": cart.updated_at
        }
        if cart.guest_email:
            fields["guest_email"] = cart.guest_email

        with storage_errors(f"saving cart {cart.id}"):
            result = await db.carts.update_one(
                {"_id": parse_object_id(cart.id), "version": cart.version},
                {"$set": fields, "$inc": {"version": 1}}
            )

        if result.matched_count == 0:
            return False

        cart.version += 1
        return True

    @staticmethod
    async def save(cart: Cart, db: AsyncIOMotorDatabase) -> Cart:
        """Write the cart back, failing with CartConflict if it changed since loading."""
        if not await CartService._write(cart, db):
            logger.warning(f"Cart {cart.id} changed or disappeared before it could be saved")
            raise CartConflict(cart.id)
        return cart

    @staticmethod
    async def _mutate(
        user_id: Optional[str],
        session_id: Optional[str],
        db: AsyncIOMotorDatabase,
        change: CartChange,
        create: bool = True
    ) -> Cart:
        """
        Load the cart, apply ``change`` and save it.

        A save that loses to a concurrent writer reloads the cart and applies
        the change again, up to CART_WRITE_ATTEMPTS times. With ``create`` off
        a missing cart raises CartNotFound instead of being created.
        """
        load = CartService.resolve if create else CartService.find_existing

        cart = None
        for attempt in range(1, settings.CART_WRITE_ATTEMPTS + 1):
            cart = await load(user_id, session_id, db)
            if not await change(cart):
                return cart
            if await CartService._write(cart, db):
                return cart
            logger.info(f"Cart {cart.id} changed concurrently, reapplying (attempt {attempt})")

        logger.warning(
            f"Giving up on cart {cart.id} after {settings.CART_WRITE_ATTEMPTS} conflicting writes"
        )
        raise CartConflict(cart.id)

    @staticmethod
    async def _get_sellable_book(book_id: str, catalog: BookCatalog) -> Book:
        book = await catalog.get_book_by_id(book_id)
        if not book or not book.is_sellable:
            raise BookUnavailable(book_id)
        return book

    @staticmethod
    async def add_item(
        user_id: Optional[str],
        session_id: Optional[str],
        book_id: str,
        quantity: int,
        catalog: BookCatalog,
        db: AsyncIOMotorDatabase
    ) -> Cart:
        """Add a book at its current catalog price, checking stock first."""
        CartService._require_identity(user_id, session_id)
        book = await CartService._get_sellable_book(book_id, catalog)

        async def change(cart: Cart) -> bool:
            existing = cart.get_item(book_id)
            requested = quantity + (existing.quantity if existing else 0)
            if book.stock < requested:
                raise InsufficientStock(book_id, requested, book.stock)
            cart.add_item(book_id, quantity, book.price)
            return True

        return await CartService._mutate(user_id, session_id, db, change)

    @staticmethod
    async def update_item(
        user_id: Optional[str],
        session_id: Optional[str],
        book_id: str,
        quantity: int,
        catalog: BookCatalog,
        db: AsyncIOMotorDatabase
    ) -> Cart:
        """Set an item's quantity; 0 removes it."""
        async def change(cart: Cart) -> bool:
            if not cart.get_item(book_id):
                raise ItemNotFound(book_id)
            if quantity > 0:
                book = await CartService._get_sellable_book(book_id, catalog)
                if book.stock < quantity:
                    raise InsufficientStock(book_id, quantity, book.stock)
            cart.update_item(book_id, quantity)
            return True

        return await CartService._mutate(user_id, session_id, db, change)

    @staticmethod
    async def remove_item(
        user_id: Optional[str],
        session_id: Optional[str],
        book_id: str,
        db: AsyncIOMotorDatabase
    ) -> Cart:
        async def change(cart: Cart) -> bool:
            if not cart.get_item(book_id):
                return False
            cart.remove_item(book_id)
            return True

        return await CartService._mutate(user_id, session_id, db, change, create=False)

    @staticmethod
    async def clear(
        user_id: Optional[str],
        session_id: Optional[str],
        db: AsyncIOMotorDatabase
    ) -> Cart:
        async def change(cart: Cart) -> bool:
            cart.clear()
            return True

        return await CartService._mutate(user_id, session_id, db, change, create=False)

    @staticmethod
    async def set_guest_email(
        user_id: Optional[str],
        session_id: Optional[str],
        guest_email: str,
        db: AsyncIOMotorDatabase
    ) -> Cart:
        async def change(cart: Cart) -> bool:
            if not cart.is_guest:
                raise InvalidIdentity("Guest email can only be set on a guest cart")
            cart.set_guest_email(guest_email)
            return True

        return await CartService._mutate(user_id, session_id, db, change)

    @staticmethod
    async def merge_guest_cart(
        user_id: Optional[str],
        session_id: str,
        db: AsyncIOMotorDatabase
    ) -> Tuple[Cart, bool]:
        """
        Merge a guest cart into the user's cart.

        Returns the user's cart and whether anything was merged. Without a
        user cart the guest cart is simply claimed. Otherwise the guest cart
        is removed in one atomic step before its items are merged, so a cart
        claimed by someone else in the meantime is never touched and a retry
        cannot merge the same items twice.
        """
        if not user_id:
            raise Unauthorized()
        user_id = str(user_id)

        if await CartService._find_cart({"user_id": user_id}, db) is None:
            claimed = await CartService._claim_guest_cart(user_id, session_id, db)
            if claimed:
                return claimed, bool(claimed.items)

        with storage_errors("taking guest cart"):
            guest_doc = await db.carts.find_one_and_delete(
                {"session_id": session_id, "user_id": None}
            )

        guest_cart = Cart.model_validate(guest_doc) if guest_doc else None
        if guest_cart is None or not guest_cart.items:
            cart = await CartService.resolve(user_id, None, db)
            return cart, False

        async def change(cart: Cart) -> bool:
            cart.merge(guest_cart)
            return True

        try:
            cart = await CartService._mutate(user_id, None, db, change)
        except CartError:
            await CartService._restore_guest_cart(guest_doc, db)
            raise

        logger.info(
            f"Merged guest cart {guest_cart.id} ({guest_cart.total_items} items) "
            f"into cart {cart.id} of user {user_id}"
        )
        return cart, True

    @staticmethod
    async def _restore_guest_cart(guest_doc: dict, db: AsyncIOMotorDatabase) -> None:
        """Put back a guest cart taken for a merge that could not be saved."""
        try:
            await db.carts.insert_one(guest_doc)
        except PyMongoError as e:
            logger.error(f"Could not restore guest cart {guest_doc.get('_id')}: {e}")

    @staticmethod
    async def validate_items(cart: Cart, catalog: BookCatalog) -> List[CartIssue]:
        """Revalidate a cart against the catalog before checkout."""
        validator = CartValidator(catalog.get_book_by_id)
        return await validator.validate_items(cart)

    @staticmethod
    def get_summary(cart: Cart) -> CartSummary:
        """Checkout totals: tax on the subtotal, flat shipping below the threshold."""
        subtotal = cart.total_price
        tax = round(subtotal * settings.TAX_RATE, 2)
        free_shipping = subtotal >= settings.FREE_SHIPPING_THRESHOLD
        shipping = 0.0 if free_shipping or not cart.items else settings.SHIPPING_FEE

        return CartSummary(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=round(subtotal + tax + shipping, 2),
            item_count=cart.total_items,
            free_shipping_eligible=free_shipping,
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD
        )

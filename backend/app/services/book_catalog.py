from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.database import storage_errors
from app.models.book import Book
from app.utils.helpers import parse_object_id


class BookCatalog:
    """Read access to the books collection, as used by the cart."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_book_by_id(self, book_id: str) -> Optional[Book]:
        """Get a book by id. Returns None for unknown or malformed ids."""
        object_id = parse_object_id(book_id)
        if object_id is None:
            return None

        with storage_errors(f"loading book {book_id}"):
            book = await self.db.books.find_one({"_id": object_id})

        if not book:
            return None
        return Book.model_validate(book)

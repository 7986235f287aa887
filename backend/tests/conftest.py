"""
Shared fixtures for cart tests.

The in-memory collections implement only the Motor calls the cart code
makes, with the unique-owner behavior of the real indexes. Every call
yields to the event loop once, so ``asyncio.gather`` interleaves requests.
"""
import asyncio
import copy
import os
from types import SimpleNamespace

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

class InMemoryCollection:
    """Tiny async stand-in for a Motor collection."""

    def __init__(self, unique_fields=()):
        self.docs = []
        self.unique_fields = unique_fields

    @staticmethod
    def _matches(doc, query):
        for key, value in query.items():
            if value is None:
                if doc.get(key) is not None:
                    return False
            elif doc.get(key) != value:
                return False
        return True

    def _check_unique(self, candidate, skip=None):
        for field in self.unique_fields:
            value = candidate.get(field)
            if not isinstance(value, str):
                continue
            for index, doc in enumerate(self.docs):
                if index != skip and doc.get(field) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key error: {field}")

    @staticmethod
    def _apply(doc, update, inserting=False):
        result = copy.deepcopy(doc)
        for key, value in update.get("$set", {}).items():
            result[key] = copy.deepcopy(value)
        for key in update.get("$unset", {}):
            result.pop(key, None)
        for key, value in update.get("$inc", {}).items():
            result[key] = result.get(key, 0) + value
        if inserting:
            for key, value in update.get("$setOnInsert", {}).items():
                result[key] = copy.deepcopy(value)
        return result

    def _index_of(self, query):
        for index, doc in enumerate(self.docs):
            if self._matches(doc, query):
                return index
        return None

    def _upsert(self, query, update):
        new_doc = {"_id": ObjectId()}
        new_doc.update({k: v for k, v in query.items() if v is not None})
        new_doc = self._apply(new_doc, update, inserting=True)
        self._check_unique(new_doc)
        self.docs.append(new_doc)
        return new_doc

    async def find_one(self, query):
        await asyncio.sleep(0)
        index = self._index_of(query)
        return copy.deepcopy(self.docs[index]) if index is not None else None

    async def insert_one(self, doc):
        await asyncio.sleep(0)
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update, upsert=False):
        await asyncio.sleep(0)
        index = self._index_of(query)
        if index is not None:
            updated = self._apply(self.docs[index], update)
            self._check_unique(updated, skip=index)
            self.docs[index] = updated
            return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            new_doc = self._upsert(query, update)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=new_doc["_id"])
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def find_one_and_update(self, query, update, upsert=False,
                                  return_document=ReturnDocument.BEFORE):
        await asyncio.sleep(0)
        index = self._index_of(query)
        if index is None:
            if not upsert:
                return None
            new_doc = self._upsert(query, update)
            return copy.deepcopy(new_doc) if return_document == ReturnDocument.AFTER else None
        before = self.docs[index]
        updated = self._apply(before, update)
        self._check_unique(updated, skip=index)
        self.docs[index] = updated
        return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else before)

    async def find_one_and_delete(self, query):
        await asyncio.sleep(0)
        index = self._index_of(query)
        if index is None:
            return None
        return self.docs.pop(index)

class InMemoryDatabase:
    def __init__(self):
        self.carts = InMemoryCollection(unique_fields=("user_id", "session_id"))
        self.books = InMemoryCollection()

def insert_book(db, price=10.0, stock=5, status="ACTIVE", title="Test Book") -> str:
    """Put a book straight into the in-memory catalog and return its id."""
    book_id = ObjectId()
    db.books.docs.append({
        "_id": book_id,
        "title": title,
        "price": price,
        "stock": stock,
        "status": status
    })
    return str(book_id)

@pytest.fixture
def fake_db():
    return InMemoryDatabase()

@pytest.fixture
def catalog(fake_db):
    from app.services.book_catalog import BookCatalog
    return BookCatalog(fake_db)

@pytest.fixture
def add_book(fake_db):
    """Factory fixture inserting catalog books into the fake database."""
    def _add_book(**fields):
        return insert_book(fake_db, **fields)
    return _add_book

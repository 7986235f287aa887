from typing import Optional
from fastapi import Depends, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from motor.motor_asyncio import AsyncIOMotorDatabase
from app.core.database import get_database
from app.core.security import decode_access_token
from app.schemas.cart import CartIdentity
from app.services.book_catalog import BookCatalog

# Security scheme; carts also work without a token
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncIOMotorDatabase:
    """Dependency to get database instance."""
    return get_database()


async def get_book_catalog(
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> BookCatalog:
    """Dependency to get the book lookup used by cart checks."""
    return BookCatalog(db)


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """
    Dependency to optionally get the current user's id.
    Returns None if no valid token is provided.
    """
    if not credentials:
        return None

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        return None

    user_id = payload.get("sub")
    return str(user_id) if user_id else None


async def get_cart_identity(
    session_id: Optional[str] = Query(None, min_length=1, max_length=128),
    user_id: Optional[str] = Depends(get_optional_user_id)
) -> CartIdentity:
    """
    Dependency describing whose cart a request targets.

    Both may be present right after sign-in; resolution prefers the user.
    """
    return CartIdentity(user_id=user_id, session_id=session_id)

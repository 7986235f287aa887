from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from app.utils.helpers import object_id_to_str


class BookStatus(str, Enum):
    """Catalog status of a book."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class Book(BaseModel):
    """Read-only view of a catalog book, limited to what the cart needs."""
    id: Optional[str] = Field(None, alias="_id")
    title: str = ""
    price: float = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    status: BookStatus = BookStatus.ACTIVE

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, value):
        return object_id_to_str(value)

    @property
    def is_sellable(self) -> bool:
        return self.status == BookStatus.ACTIVE

    class Config:
        populate_by_name = True
        extra = "ignore"
        json_schema_extra = {
            "example": {
                "_id": "665f1c2e9b1e8a3d4c5b6a70",
                "title": "The Pragmatic Programmer",
                "price": 39.99,
                "stock": 12,
                "status": "ACTIVE"
            }
        }

"""Menu data models.

These models represent canteens and their menu items as stored in DynamoDB.
The inventory service is the only writer of MenuItem records; everything else
reads them or receives them through update events.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class MenuItem(BaseModel):
    """Menu item model.

    ``is_enabled`` is the administrative switch staff flip from the dashboard.
    ``is_available`` is derived: an item is orderable only while it has stock
    and has not been disabled.
    """

    model_config = ConfigDict(json_encoders={Decimal: str})

    item_id: str = Field(..., description="Unique identifier for the menu item")
    canteen_id: str = Field(..., description="Canteen this item belongs to")
    name: str = Field(..., description="Item name", min_length=1)
    description: str | None = Field(None, description="Item description")
    category: str = Field(..., description="Menu category, e.g. 'Snacks'")
    is_veg: bool = Field(default=False, description="Whether the item is vegetarian")
    price: Decimal = Field(..., description="Item price", ge=0)
    image_url: str | None = Field(None, description="URL to item image")
    available_quantity: int = Field(default=0, description="Units left in stock", ge=0)
    is_enabled: bool = Field(default=True, description="Administrative availability switch")
    is_available: bool = Field(default=False, description="Orderable right now")
    rating: Decimal = Field(default=Decimal("0"), description="Average rating", ge=0)
    total_ratings: int = Field(default=0, description="Number of ratings", ge=0)
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Last mutation timestamp")

    @field_validator("available_quantity")
    @classmethod
    def validate_available_quantity(cls, v: int) -> int:
        """Validate that available_quantity is non-negative."""
        if v < 0:
            raise ValueError("available_quantity must be non-negative")
        return v

    def with_stock(self, quantity: int, updated_at: datetime) -> "MenuItem":
        """Return a copy with a new quantity and the availability re-derived."""
        return self.model_copy(
            update={
                "available_quantity": quantity,
                "is_available": self.is_enabled and quantity > 0,
                "updated_at": updated_at,
            }
        )

    def with_enabled(self, enabled: bool, updated_at: datetime) -> "MenuItem":
        """Return a copy with the administrative switch changed."""
        return self.model_copy(
            update={
                "is_enabled": enabled,
                "is_available": enabled and self.available_quantity > 0,
                "updated_at": updated_at,
            }
        )

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "item_id": self.item_id,
            "canteen_id": self.canteen_id,
            "name": self.name,
            "category": self.category,
            "is_veg": self.is_veg,
            "price": self.price,
            "available_quantity": self.available_quantity,
            "is_enabled": self.is_enabled,
            "is_available": self.is_available,
            "rating": self.rating,
            "total_ratings": self.total_ratings,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

        if self.description is not None:
            item["description"] = self.description

        if self.image_url is not None:
            item["image_url"] = self.image_url

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "MenuItem":
        """Create MenuItem from DynamoDB item.

        DynamoDB hands numbers back as Decimal, so integer fields are coerced.

        Args:
            item: DynamoDB item dictionary

        Returns:
            MenuItem: Parsed model instance
        """
        return cls(
            item_id=item["item_id"],
            canteen_id=item["canteen_id"],
            name=item["name"],
            description=item.get("description"),
            category=item["category"],
            is_veg=bool(item.get("is_veg", False)),
            price=Decimal(str(item["price"])),
            image_url=item.get("image_url"),
            available_quantity=int(item.get("available_quantity", 0)),
            is_enabled=bool(item.get("is_enabled", True)),
            is_available=bool(item.get("is_available", False)),
            rating=Decimal(str(item.get("rating", "0"))),
            total_ratings=int(item.get("total_ratings", 0)),
            created_at=datetime.fromisoformat(item["created_at"]),
            updated_at=datetime.fromisoformat(item["updated_at"]),
        )


class NewMenuItem(BaseModel):
    """Attributes staff supply when adding an item to a canteen menu."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    category: str = Field(..., min_length=1)
    is_veg: bool = False
    price: Decimal = Field(..., gt=0)
    image_url: str | None = None
    available_quantity: int = Field(default=0, ge=0)


class Canteen(BaseModel):
    """Canteen model."""

    canteen_id: str = Field(..., description="Unique identifier for the canteen")
    name: str = Field(..., description="Canteen name")
    location: str | None = Field(None, description="Where on campus the canteen is")
    is_open: bool = Field(default=True, description="Whether the canteen is taking orders")
    updated_at: datetime = Field(default_factory=utc_now, description="Last status change")

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "canteen_id": self.canteen_id,
            "name": self.name,
            "is_open": self.is_open,
            "updated_at": self.updated_at.isoformat(),
        }

        if self.location is not None:
            item["location"] = self.location

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "Canteen":
        """Create Canteen from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Canteen: Parsed model instance
        """
        return cls(
            canteen_id=item["canteen_id"],
            name=item["name"],
            location=item.get("location"),
            is_open=bool(item.get("is_open", True)),
            updated_at=datetime.fromisoformat(item["updated_at"]),
        )

"""Shared pytest fixtures and configuration for all tests."""

import copy
import os
from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import pytest
from boto3.dynamodb.types import TypeDeserializer

# Keep src.main from building the real application at import time
os.environ["ENVIRONMENT"] = "test"

from canteen_menu_sync.models.menu_models import Canteen, MenuItem  # noqa: E402


class FakeTable:
    """In-memory stand-in for a boto3 DynamoDB Table with a single hash key."""

    def __init__(self, name: str, key_name: str) -> None:
        self.name = name
        self.key_name = key_name
        self.items: dict[str, dict[str, Any]] = {}

    def get_item(self, Key: dict[str, Any], ConsistentRead: bool = False) -> dict[str, Any]:
        item = self.items.get(Key[self.key_name])
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def put_item(self, Item: dict[str, Any]) -> dict[str, Any]:
        self.items[Item[self.key_name]] = copy.deepcopy(Item)
        return {}

    def delete_item(self, Key: dict[str, Any]) -> dict[str, Any]:
        self.items.pop(Key[self.key_name], None)
        return {}

    def scan(self, FilterExpression: Any = None, **kwargs: Any) -> dict[str, Any]:
        items = list(self.items.values())
        if FilterExpression is not None:
            attr, value = FilterExpression.get_expression()["values"]
            items = [i for i in items if i.get(attr.name) == value]
        return {"Items": copy.deepcopy(items)}


class FakeDynamoDBClient:
    """Low-level client supporting transact_write_items over FakeTables."""

    def __init__(self, tables: dict[str, FakeTable]) -> None:
        self.tables = tables
        self._deserializer = TypeDeserializer()

    def transact_write_items(self, TransactItems: list[dict[str, Any]]) -> dict[str, Any]:
        for entry in TransactItems:
            put = entry["Put"]
            item = {k: self._deserializer.deserialize(v) for k, v in put["Item"].items()}
            self.tables[put["TableName"]].put_item(Item=item)
        return {}


class FakeDynamoDBResource:
    """Minimal boto3 DynamoDB service resource backed by memory."""

    KEYS = {"canteen-menu-items": "item_id", "canteen-canteens": "canteen_id"}

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.meta = SimpleNamespace(client=FakeDynamoDBClient(self.tables))

    def Table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name, self.KEYS.get(name, "id"))
        return self.tables[name]


@pytest.fixture
def fake_dynamodb() -> FakeDynamoDBResource:
    """Fixture providing an empty in-memory DynamoDB resource."""
    return FakeDynamoDBResource()


@pytest.fixture
def canteen_id() -> str:
    """Fixture providing a standard test canteen ID."""
    return "canteen_main"


@pytest.fixture
def base_time() -> datetime:
    """Fixture providing a fixed UTC timestamp."""
    return datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def sample_canteen(canteen_id: str, base_time: datetime) -> Canteen:
    """Fixture providing an open canteen."""
    return Canteen(
        canteen_id=canteen_id,
        name="Main Canteen",
        location="Block A",
        is_open=True,
        updated_at=base_time,
    )


@pytest.fixture
def make_item(canteen_id: str, base_time: datetime):
    """Fixture providing a factory for menu items."""

    def _make(item_id: str = "item_samosa", quantity: int = 10, **overrides: Any) -> MenuItem:
        fields: dict[str, Any] = {
            "item_id": item_id,
            "canteen_id": canteen_id,
            "name": "Samosa",
            "description": "Crispy potato samosa",
            "category": "Snacks",
            "is_veg": True,
            "price": Decimal("15.00"),
            "available_quantity": quantity,
            "is_enabled": True,
            "is_available": quantity > 0,
            "created_at": base_time,
            "updated_at": base_time,
        }
        fields.update(overrides)
        return MenuItem(**fields)

    return _make

"""Unit tests for update event models."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from canteen_menu_sync.models.event_models import (
    CHANNEL_EVENT_NAMES,
    BulkUpdateEvent,
    CanteenStatusChangedEvent,
    ItemAddedEvent,
    ItemRemovedEvent,
    ItemUpdatedEvent,
    LowStockAlertEvent,
    parse_update_event,
    room_name,
)


@pytest.mark.unit
class TestEventPayloads:
    """Test suite for event serialization."""

    def test_item_updated_payload_uses_camel_case(self, make_item) -> None:
        """Test that payloads use camelCase keys and carry their kind."""
        event = ItemUpdatedEvent.from_item(make_item(quantity=4))

        payload = event.to_payload()

        assert payload == {
            "canteenId": "canteen_main",
            "updatedAt": "2024-03-01T12:00:00Z",
            "kind": "item-updated",
            "itemId": "item_samosa",
            "name": "Samosa",
            "availableQuantity": 4,
            "isAvailable": True,
            "category": "Snacks",
            "isVeg": True,
        }

    def test_item_added_payload_nests_menu_item(self, make_item) -> None:
        """Test that item-added events carry the full item view."""
        payload = ItemAddedEvent.from_item(make_item()).to_payload()

        assert payload["menuItem"]["itemId"] == "item_samosa"
        assert payload["menuItem"]["price"] == "15.00"
        assert payload["menuItem"]["createdAt"] == "2024-03-01T12:00:00Z"

    def test_low_stock_alert_carries_threshold(self, make_item) -> None:
        """Test that low-stock alerts carry the configured threshold."""
        event = LowStockAlertEvent.from_item(make_item(quantity=2), threshold=3)

        assert event.threshold == 3
        assert event.available_quantity == 2
        assert event.item_ids == ["item_samosa"]

    def test_bulk_update_lists_items(self, make_item, base_time: datetime) -> None:
        """Test that bulk updates expose every affected item id."""
        items = [make_item("item_a"), make_item("item_b", name="Vada")]

        event = BulkUpdateEvent.from_items("canteen_main", items, base_time)

        assert event.item_ids == ["item_a", "item_b"]
        assert event.items[1].name == "Vada"

    def test_canteen_event_has_no_item_ids(self, sample_canteen) -> None:
        """Test that canteen-level events affect no item."""
        event = CanteenStatusChangedEvent.from_canteen(sample_canteen)

        assert event.item_ids == []
        assert event.canteen_name == "Main Canteen"

    def test_events_are_immutable(self, make_item) -> None:
        """Test that events cannot be modified after construction."""
        event = ItemUpdatedEvent.from_item(make_item())

        with pytest.raises(ValidationError):
            event.available_quantity = 0


@pytest.mark.unit
class TestParseUpdateEvent:
    """Test suite for parse_update_event."""

    def test_round_trips_every_kind_through_its_payload(self, make_item, sample_canteen, base_time) -> None:
        """Test that every serialized kind parses back to the same event."""
        item = make_item(quantity=3)
        events = [
            ItemUpdatedEvent.from_item(item),
            ItemAddedEvent.from_item(item),
            ItemRemovedEvent(
                canteen_id=item.canteen_id, item_id=item.item_id, item_name=item.name, updated_at=base_time
            ),
            LowStockAlertEvent.from_item(item, threshold=5),
            BulkUpdateEvent.from_items(item.canteen_id, [item], base_time),
            CanteenStatusChangedEvent.from_canteen(sample_canteen),
        ]

        for event in events:
            scoped_name, _global_name = CHANNEL_EVENT_NAMES[event.kind]
            assert parse_update_event(scoped_name, event.to_payload()) == event

    def test_infers_kind_from_scoped_event_name(self, base_time: datetime) -> None:
        """Test that a payload without kind is typed by its channel event name."""
        event = parse_update_event(
            "menu-item-removed",
            {
                "canteenId": "c1",
                "itemId": "item_1",
                "itemName": "Tea",
                "updatedAt": base_time.isoformat(),
            },
        )

        assert isinstance(event, ItemRemovedEvent)
        assert event.item_id == "item_1"

    def test_rejects_unknown_kind(self) -> None:
        """Test that an unknown kind fails validation."""
        with pytest.raises(ValidationError):
            parse_update_event("whatever", {"kind": "menu-exploded", "canteenId": "c1"})

    def test_rejects_missing_fields(self, base_time: datetime) -> None:
        """Test that a payload missing required fields fails validation."""
        with pytest.raises(ValidationError):
            parse_update_event(
                "menu-item-updated", {"canteenId": "c1", "updatedAt": base_time.isoformat()}
            )


@pytest.mark.unit
def test_room_name() -> None:
    """Test canteen room naming."""
    assert room_name("42") == "canteen-42"


@pytest.mark.unit
def test_every_kind_has_distinct_scoped_name() -> None:
    """Test that scoped event names identify their kind uniquely."""
    scoped_names = [scoped for scoped, _global in CHANNEL_EVENT_NAMES.values()]
    assert len(scoped_names) == len(set(scoped_names))

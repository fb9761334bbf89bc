"""Menu update event models.

Every state change the inventory service commits is described by exactly one
of the event kinds below. The union is closed: ``kind`` is the discriminator,
and both the broadcaster and the client reconciliation engine dispatch on it.

On the wire an event is a JSON object with camelCase keys, wrapped in a frame
``{"event": <channel event name>, "data": <payload>}``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from canteen_menu_sync.models.menu_models import Canteen, MenuItem

DEFAULT_LOW_STOCK_THRESHOLD = 5


class EventModel(BaseModel):
    """Base model for wire payloads (camelCase aliases, immutable)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class UpdateEventBase(EventModel):
    """Fields shared by every event kind."""

    canteen_id: str
    updated_at: datetime

    @property
    def item_ids(self) -> list[str]:
        """Item ids affected by this event (empty for canteen-level events)."""
        return []

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON payload sent to clients."""
        return self.model_dump(mode="json", by_alias=True)


class ItemUpdatedEvent(UpdateEventBase):
    """Quantity and/or availability of an item changed."""

    kind: Literal["item-updated"] = "item-updated"
    item_id: str
    name: str
    available_quantity: int
    is_available: bool
    category: str
    is_veg: bool

    @property
    def item_ids(self) -> list[str]:
        return [self.item_id]

    @classmethod
    def from_item(cls, item: MenuItem) -> "ItemUpdatedEvent":
        return cls(
            canteen_id=item.canteen_id,
            item_id=item.item_id,
            name=item.name,
            available_quantity=item.available_quantity,
            is_available=item.is_available,
            category=item.category,
            is_veg=item.is_veg,
            updated_at=item.updated_at,
        )


class AvailabilityChangedEvent(UpdateEventBase):
    """Staff switched an item on or off."""

    kind: Literal["availability-changed"] = "availability-changed"
    item_id: str
    item_name: str
    is_available: bool

    @property
    def item_ids(self) -> list[str]:
        return [self.item_id]

    @classmethod
    def from_item(cls, item: MenuItem) -> "AvailabilityChangedEvent":
        return cls(
            canteen_id=item.canteen_id,
            item_id=item.item_id,
            item_name=item.name,
            is_available=item.is_available,
            updated_at=item.updated_at,
        )


class AddedMenuItem(EventModel):
    """Full item view carried by an item-added event."""

    item_id: str
    name: str
    description: str | None = None
    price: Decimal
    category: str
    is_veg: bool
    available_quantity: int
    is_available: bool
    created_at: datetime


class ItemAddedEvent(UpdateEventBase):
    """A new item appeared on a canteen menu."""

    kind: Literal["item-added"] = "item-added"
    menu_item: AddedMenuItem

    @property
    def item_ids(self) -> list[str]:
        return [self.menu_item.item_id]

    @classmethod
    def from_item(cls, item: MenuItem) -> "ItemAddedEvent":
        return cls(
            canteen_id=item.canteen_id,
            menu_item=AddedMenuItem(
                item_id=item.item_id,
                name=item.name,
                description=item.description,
                price=item.price,
                category=item.category,
                is_veg=item.is_veg,
                available_quantity=item.available_quantity,
                is_available=item.is_available,
                created_at=item.created_at,
            ),
            updated_at=item.updated_at,
        )


class ItemRemovedEvent(UpdateEventBase):
    """An item was deleted from a canteen menu."""

    kind: Literal["item-removed"] = "item-removed"
    item_id: str
    item_name: str

    @property
    def item_ids(self) -> list[str]:
        return [self.item_id]


class LowStockAlertEvent(UpdateEventBase):
    """Stock of an item dropped to or below the alert threshold."""

    kind: Literal["low-stock-alert"] = "low-stock-alert"
    item_id: str
    item_name: str
    available_quantity: int
    threshold: int = DEFAULT_LOW_STOCK_THRESHOLD

    @property
    def item_ids(self) -> list[str]:
        return [self.item_id]

    @classmethod
    def from_item(cls, item: MenuItem, threshold: int) -> "LowStockAlertEvent":
        return cls(
            canteen_id=item.canteen_id,
            item_id=item.item_id,
            item_name=item.name,
            available_quantity=item.available_quantity,
            threshold=threshold,
            updated_at=item.updated_at,
        )


class BulkItemState(EventModel):
    """Per-item entry of a bulk-update event."""

    item_id: str
    name: str
    available_quantity: int
    is_available: bool


class BulkUpdateEvent(UpdateEventBase):
    """Several items of one canteen changed in a single commit."""

    kind: Literal["bulk-update"] = "bulk-update"
    items: list[BulkItemState]

    @property
    def item_ids(self) -> list[str]:
        return [entry.item_id for entry in self.items]

    @classmethod
    def from_items(
        cls, canteen_id: str, items: list[MenuItem], updated_at: datetime
    ) -> "BulkUpdateEvent":
        return cls(
            canteen_id=canteen_id,
            items=[
                BulkItemState(
                    item_id=item.item_id,
                    name=item.name,
                    available_quantity=item.available_quantity,
                    is_available=item.is_available,
                )
                for item in items
            ],
            updated_at=updated_at,
        )


class CanteenStatusChangedEvent(UpdateEventBase):
    """A canteen opened or closed."""

    kind: Literal["canteen-status-changed"] = "canteen-status-changed"
    canteen_name: str
    is_open: bool

    @classmethod
    def from_canteen(cls, canteen: Canteen) -> "CanteenStatusChangedEvent":
        return cls(
            canteen_id=canteen.canteen_id,
            canteen_name=canteen.name,
            is_open=canteen.is_open,
            updated_at=canteen.updated_at,
        )


UpdateEvent = Annotated[
    Union[
        ItemUpdatedEvent,
        AvailabilityChangedEvent,
        ItemAddedEvent,
        ItemRemovedEvent,
        LowStockAlertEvent,
        BulkUpdateEvent,
        CanteenStatusChangedEvent,
    ],
    Field(discriminator="kind"),
]

update_event_adapter: TypeAdapter[UpdateEvent] = TypeAdapter(UpdateEvent)

# kind -> (event name on the canteen room, event name on the global feed)
CHANNEL_EVENT_NAMES: dict[str, tuple[str, str]] = {
    "item-updated": ("menu-item-updated", "menu-update"),
    "availability-changed": ("menu-availability-changed", "availability-update"),
    "item-added": ("menu-item-added", "menu-change"),
    "item-removed": ("menu-item-removed", "menu-change"),
    "low-stock-alert": ("low-stock-alert", "low-stock-update"),
    "bulk-update": ("bulk-menu-update", "menu-bulk-change"),
    "canteen-status-changed": ("canteen-status-changed", "canteen-status-update"),
}

SCOPED_EVENT_KINDS: dict[str, str] = {
    scoped: kind for kind, (scoped, _global) in CHANNEL_EVENT_NAMES.items()
}


def room_name(canteen_id: str) -> str:
    """Name of the broadcast room for a canteen."""
    return f"canteen-{canteen_id}"


def parse_update_event(event_name: str, data: dict[str, Any]) -> UpdateEvent:
    """Parse a received frame into a typed event.

    Payloads normally carry their ``kind``; for frames that do not, the kind is
    recovered from the scoped channel event name.

    Raises:
        pydantic.ValidationError: If the payload does not match any event kind
    """
    if "kind" not in data and event_name in SCOPED_EVENT_KINDS:
        data = {**data, "kind": SCOPED_EVENT_KINDS[event_name]}
    return update_event_adapter.validate_python(data)

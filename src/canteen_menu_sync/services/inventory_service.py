"""Inventory service: the single writer of menu item state.

Every mutation is a read-modify-write against DynamoDB under a per-item lock
(per-canteen plus every touched item for batch operations). The resulting
events are published only after the write succeeded and before the lock is
released, so events for one item leave in commit order.
"""

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable, Mapping
from contextlib import AsyncExitStack
from datetime import datetime, timedelta

from pydantic import BaseModel, Field, model_validator

from canteen_menu_sync.exceptions import (
    BroadcastUnavailable,
    CanteenNotFound,
    DuplicateItem,
    InsufficientStock,
    InvalidMutation,
    ItemNotFound,
)
from canteen_menu_sync.models.event_models import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    AvailabilityChangedEvent,
    BulkUpdateEvent,
    CanteenStatusChangedEvent,
    ItemAddedEvent,
    ItemRemovedEvent,
    ItemUpdatedEvent,
    LowStockAlertEvent,
    UpdateEvent,
)
from canteen_menu_sync.models.menu_models import Canteen, MenuItem, NewMenuItem, utc_now
from canteen_menu_sync.observability import metrics, traced
from canteen_menu_sync.realtime.broadcaster import EventBroadcaster
from canteen_menu_sync.repositories.menu_repositories import CanteenRepository, MenuItemRepository

logger = logging.getLogger(__name__)

# Smallest step used to keep an item's updated_at strictly increasing
TIMESTAMP_STEP = timedelta(microseconds=1)


class BulkStockChange(BaseModel):
    """One entry of a bulk stock update.

    Exactly one of ``quantity_delta`` and ``quantity`` may be given.
    ``is_available`` optionally sets the administrative switch as well.
    """

    item_id: str
    quantity_delta: int | None = None
    quantity: int | None = Field(None, ge=0)
    is_available: bool | None = None

    @model_validator(mode="after")
    def validate_change(self) -> "BulkStockChange":
        if self.quantity_delta is not None and self.quantity is not None:
            raise ValueError("quantity_delta and quantity are mutually exclusive")
        if self.quantity_delta is None and self.quantity is None and self.is_available is None:
            raise ValueError("entry must change quantity or availability")
        return self


class InventoryService:
    """Service that commits menu mutations and publishes the resulting events.

    A failed broadcast never undoes a commit: it is logged and the caller
    still gets the committed state back.
    """

    def __init__(
        self,
        menu_repository: MenuItemRepository,
        canteen_repository: CanteenRepository,
        broadcaster: EventBroadcaster,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the InventoryService.

        Args:
            menu_repository: Durable store for menu items
            canteen_repository: Durable store for canteens
            broadcaster: Broadcaster that receives every committed change
            low_stock_threshold: Quantity at or below which a low-stock alert fires
            clock: Source of UTC timestamps
        """
        self.menu_repository = menu_repository
        self.canteen_repository = canteen_repository
        self.broadcaster = broadcaster
        self.low_stock_threshold = low_stock_threshold
        self._clock = clock
        # locks live only while some mutation holds or awaits them
        self._item_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._canteen_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @traced("inventory.set_quantity_delta")
    async def set_quantity_delta(self, item_id: str, delta: int) -> MenuItem:
        """Increase or decrease the stock of an item.

        Args:
            item_id: The item to change
            delta: Signed change in quantity

        Returns:
            The committed item

        Raises:
            ItemNotFound: If the item does not exist
            InsufficientStock: If the result would be negative (nothing is written)
            InvalidMutation: If delta is zero
        """
        if delta == 0:
            raise InvalidMutation("Quantity change must be non-zero")

        async with self._item_lock(item_id):
            item = self._require_item(item_id)
            new_quantity = item.available_quantity + delta

            if new_quantity < 0:
                metrics.record_insufficient_stock(item.canteen_id)
                logger.info(
                    f"Rejected decrement of {-delta} for item {item_id}: "
                    f"only {item.available_quantity} left"
                )
                raise InsufficientStock(item_id, item.available_quantity, -delta)

            updated = item.with_stock(new_quantity, self._next_timestamp(item.updated_at))
            self.menu_repository.write_menu_item(updated)
            logger.info(
                f"Item {item_id} quantity {item.available_quantity} -> {new_quantity} "
                f"(available: {updated.is_available})"
            )

            events: list[UpdateEvent] = [ItemUpdatedEvent.from_item(updated)]
            if self._crossed_low_stock(item.available_quantity, new_quantity):
                events.append(LowStockAlertEvent.from_item(updated, self.low_stock_threshold))
            await self._broadcast(events)

        return updated

    @traced("inventory.set_quantity")
    async def set_quantity(self, item_id: str, quantity: int) -> MenuItem:
        """Set the exact stock of an item.

        Raises:
            ItemNotFound: If the item does not exist
            InvalidMutation: If quantity is negative
        """
        if quantity < 0:
            raise InvalidMutation("Quantity must be a non-negative integer")

        async with self._item_lock(item_id):
            item = self._require_item(item_id)
            updated = item.with_stock(quantity, self._next_timestamp(item.updated_at))
            self.menu_repository.write_menu_item(updated)
            logger.info(f"Item {item_id} stock set {item.available_quantity} -> {quantity}")

            events: list[UpdateEvent] = [ItemUpdatedEvent.from_item(updated)]
            if updated.is_available != item.is_available:
                events.append(AvailabilityChangedEvent.from_item(updated))
            if self._crossed_low_stock(item.available_quantity, quantity):
                events.append(LowStockAlertEvent.from_item(updated, self.low_stock_threshold))
            await self._broadcast(events)

        return updated

    @traced("inventory.set_availability")
    async def set_availability(self, item_id: str, available: bool) -> MenuItem:
        """Switch an item on or off.

        Switching on an item with no stock keeps it unavailable until restocked.

        Raises:
            ItemNotFound: If the item does not exist
        """
        async with self._item_lock(item_id):
            item = self._require_item(item_id)
            updated = item.with_enabled(available, self._next_timestamp(item.updated_at))
            self.menu_repository.write_menu_item(updated)
            logger.info(f"Item {item_id} {'enabled' if available else 'disabled'}")

            await self._broadcast(
                [ItemUpdatedEvent.from_item(updated), AvailabilityChangedEvent.from_item(updated)]
            )

        return updated

    @traced("inventory.create_item")
    async def create_item(self, canteen_id: str, attrs: NewMenuItem) -> MenuItem:
        """Add a new item to a canteen menu.

        Raises:
            CanteenNotFound: If the canteen does not exist
            DuplicateItem: If the canteen already has an item with that name
        """
        async with self._canteen_lock(canteen_id):
            if self.canteen_repository.get_canteen(canteen_id) is None:
                raise CanteenNotFound(canteen_id)

            existing = self.menu_repository.read_all_menu_items(canteen_id)
            if any(i.name.lower() == attrs.name.lower() for i in existing):
                raise DuplicateItem(canteen_id, attrs.name)

            now = self._clock()
            item = MenuItem(
                item_id=f"item_{uuid.uuid4().hex[:12]}",
                canteen_id=canteen_id,
                name=attrs.name,
                description=attrs.description,
                category=attrs.category,
                is_veg=attrs.is_veg,
                price=attrs.price,
                image_url=attrs.image_url,
                available_quantity=attrs.available_quantity,
                is_enabled=True,
                is_available=attrs.available_quantity > 0,
                created_at=now,
                updated_at=now,
            )

            async with self._item_lock(item.item_id):
                self.menu_repository.write_menu_item(item)
                logger.info(f"Added item {item.item_id} ({item.name}) to canteen {canteen_id}")
                await self._broadcast([ItemAddedEvent.from_item(item)])

        return item

    @traced("inventory.remove_item")
    async def remove_item(self, item_id: str) -> MenuItem:
        """Delete an item from its canteen menu.

        Returns:
            The item as it was before removal

        Raises:
            ItemNotFound: If the item does not exist
        """
        async with self._item_lock(item_id):
            item = self._require_item(item_id)
            self.menu_repository.delete_menu_item(item_id)
            logger.info(f"Removed item {item_id} ({item.name}) from canteen {item.canteen_id}")

            await self._broadcast(
                [
                    ItemRemovedEvent(
                        canteen_id=item.canteen_id,
                        item_id=item_id,
                        item_name=item.name,
                        updated_at=self._next_timestamp(item.updated_at),
                    )
                ]
            )

        return item

    @traced("inventory.bulk_apply")
    async def bulk_apply(
        self,
        canteen_id: str,
        changes: Mapping[str, int] | list[BulkStockChange],
    ) -> list[MenuItem]:
        """Apply several stock changes to one canteen in a single commit.

        Either every change is written or none is.

        Args:
            canteen_id: Canteen that owns every item in the batch
            changes: Mapping of item id to quantity delta, or explicit change entries

        Returns:
            The committed items, in request order

        Raises:
            InvalidMutation: If the batch is empty or names an item twice
            ItemNotFound: If an item does not exist or belongs to another canteen
            InsufficientStock: If any delta would take an item below zero
        """
        if isinstance(changes, Mapping):
            changes = [
                BulkStockChange(item_id=item_id, quantity_delta=delta)
                for item_id, delta in changes.items()
            ]

        if not changes:
            raise InvalidMutation("Bulk update must contain at least one change")

        item_ids = [change.item_id for change in changes]
        if len(set(item_ids)) != len(item_ids):
            raise InvalidMutation("Bulk update names the same item more than once")

        async with AsyncExitStack() as stack:
            await stack.enter_async_context(self._canteen_lock(canteen_id))
            for item_id in sorted(item_ids):
                await stack.enter_async_context(self._item_lock(item_id))

            current: dict[str, MenuItem] = {}
            for item_id in item_ids:
                item = self.menu_repository.read_menu_item(item_id)
                if item is None or item.canteen_id != canteen_id:
                    raise ItemNotFound(item_id)
                current[item_id] = item

            commit_time = self._next_timestamp(max(i.updated_at for i in current.values()))
            updated_items: list[MenuItem] = []

            for change in changes:
                item = current[change.item_id]
                quantity = item.available_quantity
                if change.quantity is not None:
                    quantity = change.quantity
                elif change.quantity_delta is not None:
                    quantity = item.available_quantity + change.quantity_delta
                    if quantity < 0:
                        metrics.record_insufficient_stock(canteen_id)
                        raise InsufficientStock(
                            item.item_id, item.available_quantity, -change.quantity_delta
                        )

                updated = item
                if change.is_available is not None:
                    updated = updated.with_enabled(change.is_available, commit_time)
                updated_items.append(updated.with_stock(quantity, commit_time))

            self.menu_repository.write_menu_items(updated_items)
            logger.info(f"Bulk update committed for canteen {canteen_id}: {len(updated_items)} items")

            events: list[UpdateEvent] = [
                BulkUpdateEvent.from_items(canteen_id, updated_items, commit_time)
            ]
            for updated in updated_items:
                before = current[updated.item_id].available_quantity
                if self._crossed_low_stock(before, updated.available_quantity):
                    events.append(LowStockAlertEvent.from_item(updated, self.low_stock_threshold))
            await self._broadcast(events)

        return updated_items

    @traced("inventory.set_canteen_status")
    async def set_canteen_status(self, canteen_id: str, is_open: bool) -> Canteen:
        """Open or close a canteen.

        Raises:
            CanteenNotFound: If the canteen does not exist
        """
        async with self._canteen_lock(canteen_id):
            canteen = self.canteen_repository.get_canteen(canteen_id)
            if canteen is None:
                raise CanteenNotFound(canteen_id)

            updated = canteen.model_copy(
                update={"is_open": is_open, "updated_at": self._next_timestamp(canteen.updated_at)}
            )
            self.canteen_repository.save_canteen(updated)
            logger.info(f"Canteen {canteen_id} is now {'open' if is_open else 'closed'}")

            await self._broadcast([CanteenStatusChangedEvent.from_canteen(updated)])

        return updated

    def _require_item(self, item_id: str) -> MenuItem:
        item = self.menu_repository.read_menu_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    def _crossed_low_stock(self, before: int, after: int) -> bool:
        return 0 < after <= self.low_stock_threshold < before

    def _next_timestamp(self, previous: datetime) -> datetime:
        now = self._clock()
        return now if now > previous else previous + TIMESTAMP_STEP

    async def _broadcast(self, events: list[UpdateEvent]) -> None:
        for event in events:
            try:
                await self.broadcaster.publish(event)
            except BroadcastUnavailable as e:
                logger.warning(f"Broadcast of {event.kind} for canteen {event.canteen_id} failed: {e}")

    def _item_lock(self, item_id: str) -> asyncio.Lock:
        return self._item_locks.setdefault(item_id, asyncio.Lock())

    def _canteen_lock(self, canteen_id: str) -> asyncio.Lock:
        return self._canteen_locks.setdefault(canteen_id, asyncio.Lock())

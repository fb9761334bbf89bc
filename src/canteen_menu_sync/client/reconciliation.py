"""Client-side reconciliation of menu update events into a local snapshot.

One engine runs per connected client and per canteen view. It moves through
three states:

    DISCONNECTED -> BOOTSTRAPPING -> LIVE
                         ^             |
                         +-------------+   (transport error or manual resync)

Only a successful full-menu fetch moves the engine to LIVE. Events received
while BOOTSTRAPPING are buffered and replayed on top of the fetched baseline;
if the buffer fills up the fetch is repeated instead.
The snapshot is a disposable projection; it is never written back.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, NoReturn, Protocol, assert_never

from pydantic import ValidationError

from canteen_menu_sync.exceptions import BootstrapFailed, ResyncRequired
from canteen_menu_sync.models.event_models import (
    AvailabilityChangedEvent,
    BulkUpdateEvent,
    CanteenStatusChangedEvent,
    ItemAddedEvent,
    ItemRemovedEvent,
    ItemUpdatedEvent,
    LowStockAlertEvent,
    UpdateEvent,
    parse_update_event,
)
from canteen_menu_sync.models.menu_models import MenuItem

logger = logging.getLogger(__name__)

DEFAULT_TOUCH_EXPIRY_SECONDS = 3.0
DEFAULT_BOOTSTRAP_TIMEOUT = 5.0
MAX_PENDING_EVENTS = 1000
MAX_BOOTSTRAP_ATTEMPTS = 3
MAX_LOW_STOCK_ALERTS = 10


class MenuFetcher(Protocol):
    """Anything that can read a full canteen menu."""

    async def fetch_full_menu(self, canteen_id: str) -> list[MenuItem] | None: ...


class ConnectionState(str, Enum):
    """Connection state of a reconciliation engine."""

    DISCONNECTED = "disconnected"
    BOOTSTRAPPING = "bootstrapping"
    LIVE = "live"


@dataclass(frozen=True)
class MenuItemView:
    """Last-known client view of a menu item.

    Fields an event never carried stay None until a bootstrap fills them in.
    """

    item_id: str
    name: str
    updated_at: datetime
    is_available: bool
    available_quantity: int | None = None
    category: str | None = None
    is_veg: bool | None = None
    price: Decimal | None = None
    description: str | None = None
    image_url: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_menu_item(cls, item: MenuItem) -> "MenuItemView":
        return cls(
            item_id=item.item_id,
            name=item.name,
            updated_at=item.updated_at,
            is_available=item.is_available,
            available_quantity=item.available_quantity,
            category=item.category,
            is_veg=item.is_veg,
            price=item.price,
            description=item.description,
            image_url=item.image_url,
            created_at=item.created_at,
        )


class ReconciliationEngine:
    """Merges update events for one canteen into a local menu snapshot."""

    def __init__(
        self,
        canteen_id: str,
        fetcher: MenuFetcher,
        touch_expiry_seconds: float = DEFAULT_TOUCH_EXPIRY_SECONDS,
        bootstrap_timeout: float = DEFAULT_BOOTSTRAP_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize a disconnected engine with an empty snapshot.

        Args:
            canteen_id: Canteen whose menu this engine tracks
            fetcher: Source of full-menu reads used for bootstrap and resync
            touch_expiry_seconds: How long an item stays marked as just updated
            bootstrap_timeout: Upper bound in seconds for one full-menu fetch
            clock: Time source for the just-updated markers
        """
        self.canteen_id = canteen_id
        self.fetcher = fetcher
        self.touch_expiry_seconds = touch_expiry_seconds
        self.bootstrap_timeout = bootstrap_timeout
        self._clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.connection_error: str | None = None
        self.last_update: datetime | None = None
        self.canteen_open: bool | None = None
        self.low_stock_alerts: list[LowStockAlertEvent] = []

        self._snapshot: dict[str, MenuItemView] = {}
        self._removed: dict[str, datetime] = {}
        self._touched: dict[str, float] = {}
        self._pending: deque[UpdateEvent] = deque()
        self._pending_overflow = False
        self._canteen_status_at: datetime | None = None
        self._generation = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_live(self) -> bool:
        return self.state is ConnectionState.LIVE

    @property
    def is_stale(self) -> bool:
        """True when a snapshot is shown but no longer kept up to date."""
        return not self.is_live and bool(self._snapshot)

    @property
    def snapshot(self) -> dict[str, MenuItemView]:
        """Copy of the current snapshot keyed by item id."""
        return dict(self._snapshot)

    def menu(self) -> list[MenuItemView]:
        """Snapshot items ordered by category then name."""
        return sorted(
            self._snapshot.values(),
            key=lambda v: ((v.category or "").lower(), v.name.lower(), v.item_id),
        )

    def recently_touched(self) -> set[str]:
        """Item ids whose just-updated marker has not expired yet.

        Expired markers are dropped on every call, so calling this from a
        render or poll tick is enough to keep them current.
        """
        now = self._clock()
        for item_id in [i for i, expires in self._touched.items() if expires <= now]:
            del self._touched[item_id]
        return set(self._touched)

    def is_recently_touched(self, item_id: str) -> bool:
        return item_id in self.recently_touched()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def on_transport_connected(self) -> None:
        """Transport is up: fetch the baseline and go live.

        Raises:
            BootstrapFailed: If the fetch fails or times out (engine stays BOOTSTRAPPING)
        """
        logger.info(f"Transport connected for canteen {self.canteen_id}, bootstrapping")
        self.state = ConnectionState.BOOTSTRAPPING
        await self._bootstrap()

    def on_transport_lost(self, reason: str | None = None) -> None:
        """Transport went away. The snapshot is kept and flagged stale.

        A full-menu fetch still in flight is discarded when it returns.
        """
        logger.info(f"Transport lost for canteen {self.canteen_id}: {reason or 'closed'}")
        self._generation += 1
        self.state = ConnectionState.DISCONNECTED
        self.connection_error = reason
        self._pending.clear()
        self._pending_overflow = False

    async def on_transport_error(self, message: str) -> None:
        """Transport reported an error: rebuild the snapshot.

        Raises:
            BootstrapFailed: If the resync fetch fails
        """
        self.connection_error = message
        await self._resync(ResyncRequired(f"Transport error: {message}"))

    async def request_resync(self) -> None:
        """Manual resync or retry after a failed bootstrap.

        Raises:
            BootstrapFailed: If the fetch fails
        """
        await self._resync(ResyncRequired("Manual resync requested"))

    async def _resync(self, reason: ResyncRequired) -> None:
        logger.info(f"Resync for canteen {self.canteen_id}: {reason.message}")
        self.state = ConnectionState.BOOTSTRAPPING
        await self._bootstrap()

    async def _bootstrap(self) -> None:
        for attempt in range(1, MAX_BOOTSTRAP_ATTEMPTS + 1):
            self._generation += 1
            generation = self._generation
            # events buffered so far predate this fetch
            self._pending.clear()
            self._pending_overflow = False

            try:
                items = await asyncio.wait_for(
                    self.fetcher.fetch_full_menu(self.canteen_id), timeout=self.bootstrap_timeout
                )
            except TimeoutError:
                self._bootstrap_failed(
                    generation, f"Menu fetch timed out after {self.bootstrap_timeout}s"
                )
            except Exception as e:
                self._bootstrap_failed(generation, f"Menu fetch failed: {e}")

            if items is None:
                self._bootstrap_failed(generation, "Menu fetch failed")

            if generation != self._generation or self.state is not ConnectionState.BOOTSTRAPPING:
                logger.info(f"Discarding superseded bootstrap result for canteen {self.canteen_id}")
                return

            if not self._pending_overflow:
                self._go_live(items)
                return

            reason = ResyncRequired(
                f"More than {MAX_PENDING_EVENTS} events arrived during bootstrap "
                f"(attempt {attempt}/{MAX_BOOTSTRAP_ATTEMPTS})"
            )
            logger.warning(f"Refetching menu for canteen {self.canteen_id}: {reason.message}")

        self._bootstrap_failed(self._generation, "Menu kept changing faster than it could be fetched")

    def _go_live(self, items: list[MenuItem]) -> None:
        self._snapshot = {item.item_id: MenuItemView.from_menu_item(item) for item in items}
        self._removed.clear()
        self._touched.clear()
        self.state = ConnectionState.LIVE
        self.connection_error = None

        pending = list(self._pending)
        self._pending.clear()
        replayed = sum(1 for event in pending if self._merge(event))

        logger.info(
            f"Canteen {self.canteen_id} live with {len(self._snapshot)} items "
            f"({replayed}/{len(pending)} buffered events applied)"
        )

    def _bootstrap_failed(self, generation: int, message: str) -> NoReturn:
        # a newer bootstrap owns the state now
        if generation == self._generation:
            self.state = ConnectionState.BOOTSTRAPPING
            self.connection_error = message
        logger.error(f"Bootstrap failed for canteen {self.canteen_id}: {message}")
        raise BootstrapFailed(message)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_frame(self, frame: Any) -> bool:
        """Parse and handle one raw ``{"event": ..., "data": ...}`` frame.

        Malformed frames are dropped with a warning; this never raises.

        Returns:
            True if the snapshot changed
        """
        if not isinstance(frame, dict):
            logger.warning(
                f"Dropping malformed frame for canteen {self.canteen_id}: "
                f"expected an object, got {type(frame).__name__}"
            )
            return False

        try:
            event = parse_update_event(frame.get("event", ""), frame["data"])
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Dropping malformed frame for canteen {self.canteen_id}: {e}")
            return False
        return self.handle_event(event)

    def handle_event(self, event: UpdateEvent) -> bool:
        """Handle one typed event according to the current state.

        Returns:
            True if the snapshot changed
        """
        if event.canteen_id != self.canteen_id:
            logger.debug(f"Ignoring {event.kind} for canteen {event.canteen_id}")
            return False

        if self.state is ConnectionState.BOOTSTRAPPING:
            if self._pending_overflow:
                return False
            if len(self._pending) >= MAX_PENDING_EVENTS:
                logger.warning(
                    f"Buffer of {MAX_PENDING_EVENTS} events full during bootstrap "
                    f"for canteen {self.canteen_id}, menu will be fetched again"
                )
                self._pending.clear()
                self._pending_overflow = True
                return False
            self._pending.append(event)
            return False

        if self.state is ConnectionState.DISCONNECTED:
            logger.debug(f"Ignoring {event.kind} received while disconnected")
            return False

        return self._merge(event)

    def _merge(self, event: UpdateEvent) -> bool:
        changed = False

        if isinstance(event, ItemUpdatedEvent):
            changed = self._apply(
                event.item_id,
                event.updated_at,
                name=event.name,
                available_quantity=event.available_quantity,
                is_available=event.is_available,
                category=event.category,
                is_veg=event.is_veg,
            )
        elif isinstance(event, AvailabilityChangedEvent):
            changed = self._apply(
                event.item_id,
                event.updated_at,
                name=event.item_name,
                is_available=event.is_available,
            )
        elif isinstance(event, ItemAddedEvent):
            added = event.menu_item
            removed_at = self._removed.get(added.item_id)
            if removed_at is not None and event.updated_at > removed_at:
                del self._removed[added.item_id]
            changed = self._apply(
                added.item_id,
                event.updated_at,
                name=added.name,
                description=added.description,
                price=added.price,
                category=added.category,
                is_veg=added.is_veg,
                available_quantity=added.available_quantity,
                is_available=added.is_available,
                created_at=added.created_at,
            )
        elif isinstance(event, ItemRemovedEvent):
            previous = self._removed.get(event.item_id)
            if previous is None or event.updated_at > previous:
                self._removed[event.item_id] = event.updated_at
            self._touched.pop(event.item_id, None)
            changed = self._snapshot.pop(event.item_id, None) is not None
        elif isinstance(event, LowStockAlertEvent):
            if self._accepts(event.item_id, event.updated_at):
                self._record_alert(event)
            changed = self._apply(
                event.item_id,
                event.updated_at,
                name=event.item_name,
                available_quantity=event.available_quantity,
            )
        elif isinstance(event, BulkUpdateEvent):
            for entry in event.items:
                changed = (
                    self._apply(
                        entry.item_id,
                        event.updated_at,
                        name=entry.name,
                        available_quantity=entry.available_quantity,
                        is_available=entry.is_available,
                    )
                    or changed
                )
        elif isinstance(event, CanteenStatusChangedEvent):
            if self._canteen_status_at is None or event.updated_at >= self._canteen_status_at:
                changed = self.canteen_open != event.is_open
                self.canteen_open = event.is_open
                self._canteen_status_at = event.updated_at
        else:
            assert_never(event)

        if changed:
            self.last_update = event.updated_at
        return changed

    def _accepts(self, item_id: str, updated_at: datetime) -> bool:
        """False for removed items and for events older than the snapshot entry."""
        if item_id in self._removed:
            logger.debug(f"Ignoring update for removed item {item_id}")
            return False
        current = self._snapshot.get(item_id)
        if current is not None and updated_at < current.updated_at:
            logger.debug(f"Dropping stale event for item {item_id}")
            return False
        return True

    def _apply(self, item_id: str, updated_at: datetime, **fields: Any) -> bool:
        if not self._accepts(item_id, updated_at):
            return False

        current = self._snapshot.get(item_id)
        if current is None:
            fields.setdefault("is_available", bool(fields.get("available_quantity")))
            updated = MenuItemView(item_id=item_id, updated_at=updated_at, **fields)
        else:
            updated = replace(current, updated_at=updated_at, **fields)

        if updated == current:
            return False

        self._snapshot[item_id] = updated
        self._touched[item_id] = self._clock() + self.touch_expiry_seconds
        return True

    def _record_alert(self, alert: LowStockAlertEvent) -> None:
        others = [a for a in self.low_stock_alerts if a.item_id != alert.item_id]
        self.low_stock_alerts = [alert, *others][:MAX_LOW_STOCK_ALERTS]

"""Event broadcaster for committed menu mutations.

The broadcaster is constructed once per process and handed to whatever needs
to publish. It routes each event to its canteen room and, optionally, to the
unscoped global feed used by cross-canteen dashboards.
"""

import logging

from canteen_menu_sync.exceptions import BroadcastUnavailable
from canteen_menu_sync.models.event_models import CHANNEL_EVENT_NAMES, UpdateEvent
from canteen_menu_sync.observability import metrics
from canteen_menu_sync.realtime.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Fans update events out over canteen rooms and the global feed.

    Delivery is best effort. Events published while nobody is subscribed are
    lost; clients recover through a full-menu resync.
    """

    def __init__(self, registry: ConnectionRegistry, enable_global_feed: bool = True) -> None:
        """Initialize the broadcaster.

        Args:
            registry: Connection registry that owns room membership and senders
            enable_global_feed: Whether to duplicate events onto the global feed
        """
        self.registry = registry
        self.enable_global_feed = enable_global_feed
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Begin accepting events. Called on application startup."""
        self._running = True
        logger.info("Event broadcaster started")

    def stop(self) -> None:
        """Stop accepting events. Called on application shutdown."""
        self._running = False
        logger.info("Event broadcaster stopped")

    async def publish(self, event: UpdateEvent) -> int:
        """Route one event to its canteen room and the global feed.

        Args:
            event: The event to deliver

        Returns:
            Number of room members the scoped frame reached

        Raises:
            BroadcastUnavailable: If the broadcaster is stopped or the transport fails
        """
        if not self._running:
            metrics.record_broadcast_failure(event.kind)
            raise BroadcastUnavailable(f"Broadcaster is not running, dropped {event.kind} event")

        scoped_name, global_name = CHANNEL_EVENT_NAMES[event.kind]
        payload = event.to_payload()

        try:
            delivered = await self.registry.send_to_room(
                event.canteen_id, {"event": scoped_name, "data": payload}
            )
            if self.enable_global_feed:
                await self.registry.send_global({"event": global_name, "data": payload})
        except Exception as e:
            metrics.record_broadcast_failure(event.kind)
            raise BroadcastUnavailable(f"Transport failed while publishing {event.kind}: {e}") from e

        metrics.record_event_published(event.kind)
        logger.debug(
            f"Published {event.kind} for canteen {event.canteen_id} "
            f"(items: {', '.join(event.item_ids) or '-'}) to {delivered} connection(s)"
        )
        return delivered

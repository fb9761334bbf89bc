"""Unit tests for EventBroadcaster."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from canteen_menu_sync.exceptions import BroadcastUnavailable
from canteen_menu_sync.models.event_models import ItemRemovedEvent, ItemUpdatedEvent
from canteen_menu_sync.realtime.broadcaster import EventBroadcaster
from canteen_menu_sync.realtime.connection_registry import ConnectionRegistry


@pytest.mark.unit
class TestEventBroadcaster:
    """Test suite for EventBroadcaster."""

    @pytest.fixture
    def mock_registry(self) -> MagicMock:
        """Create a mock ConnectionRegistry."""
        registry = MagicMock(spec=ConnectionRegistry)
        registry.send_to_room = AsyncMock(return_value=2)
        registry.send_global = AsyncMock(return_value=1)
        return registry

    @pytest.fixture
    def broadcaster(self, mock_registry: MagicMock) -> EventBroadcaster:
        """Create a started broadcaster."""
        broadcaster = EventBroadcaster(registry=mock_registry)
        broadcaster.start()
        return broadcaster

    @pytest.mark.asyncio
    async def test_publish_sends_scoped_and_global_frames(
        self, broadcaster: EventBroadcaster, mock_registry: MagicMock, make_item
    ) -> None:
        """Test that an event goes to its canteen room and the global feed."""
        event = ItemUpdatedEvent.from_item(make_item(quantity=4))

        delivered = await broadcaster.publish(event)

        assert delivered == 2
        mock_registry.send_to_room.assert_awaited_once_with(
            "canteen_main", {"event": "menu-item-updated", "data": event.to_payload()}
        )
        mock_registry.send_global.assert_awaited_once_with(
            {"event": "menu-update", "data": event.to_payload()}
        )

    @pytest.mark.asyncio
    async def test_global_feed_can_be_disabled(
        self, mock_registry: MagicMock, make_item
    ) -> None:
        """Test that the global feed is skipped when disabled."""
        broadcaster = EventBroadcaster(registry=mock_registry, enable_global_feed=False)
        broadcaster.start()

        await broadcaster.publish(ItemUpdatedEvent.from_item(make_item()))

        mock_registry.send_to_room.assert_awaited_once()
        mock_registry.send_global.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_removed_items_use_menu_change_on_global_feed(
        self, broadcaster: EventBroadcaster, mock_registry: MagicMock, base_time
    ) -> None:
        """Test channel naming for removals."""
        event = ItemRemovedEvent(
            canteen_id="c1", item_id="item_1", item_name="Tea", updated_at=base_time
        )

        await broadcaster.publish(event)

        room_frame = mock_registry.send_to_room.call_args.args[1]
        global_frame = mock_registry.send_global.call_args.args[0]
        assert room_frame["event"] == "menu-item-removed"
        assert global_frame["event"] == "menu-change"

    @pytest.mark.asyncio
    async def test_publish_when_stopped_raises(
        self, mock_registry: MagicMock, make_item
    ) -> None:
        """Test that a stopped broadcaster refuses events."""
        broadcaster = EventBroadcaster(registry=mock_registry)

        with pytest.raises(BroadcastUnavailable):
            await broadcaster.publish(ItemUpdatedEvent.from_item(make_item()))

        mock_registry.send_to_room.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_failure_raises_broadcast_unavailable(
        self, broadcaster: EventBroadcaster, mock_registry: MagicMock, make_item
    ) -> None:
        """Test that transport errors are reported as BroadcastUnavailable."""
        mock_registry.send_to_room.side_effect = RuntimeError("transport down")

        with pytest.raises(BroadcastUnavailable, match="transport down"):
            await broadcaster.publish(ItemUpdatedEvent.from_item(make_item()))

    def test_start_stop(self, mock_registry: MagicMock) -> None:
        """Test the broadcaster lifecycle flag."""
        broadcaster = EventBroadcaster(registry=mock_registry)
        assert broadcaster.running is False

        broadcaster.start()
        assert broadcaster.running is True

        broadcaster.stop()
        assert broadcaster.running is False

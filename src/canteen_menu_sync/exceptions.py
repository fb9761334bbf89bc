"""Exception hierarchy for the menu sync service.

Mutation errors propagate to the caller of the inventory service; the HTTP
layer maps them to status codes. Broadcast errors never leave the service.
"""

from typing import Any


class MenuSyncError(Exception):
    """Base exception for all menu sync errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class ItemNotFound(MenuSyncError):
    """Operation targets a menu item that does not exist."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Menu item {item_id} not found", details={"item_id": item_id})
        self.item_id = item_id


class CanteenNotFound(MenuSyncError):
    """Operation targets a canteen that does not exist."""

    def __init__(self, canteen_id: str) -> None:
        super().__init__(f"Canteen {canteen_id} not found", details={"canteen_id": canteen_id})
        self.canteen_id = canteen_id


class InsufficientStock(MenuSyncError):
    """A decrement would take available quantity below zero."""

    def __init__(self, item_id: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for item {item_id}: {available} available, {requested} requested",
            details={"item_id": item_id, "available": available, "requested": requested},
        )
        self.item_id = item_id
        self.available = available
        self.requested = requested


class DuplicateItem(MenuSyncError):
    """An item with the same name already exists in the canteen."""

    def __init__(self, canteen_id: str, name: str) -> None:
        super().__init__(
            f"Menu item '{name}' already exists in canteen {canteen_id}",
            details={"canteen_id": canteen_id, "name": name},
        )


class InvalidMutation(MenuSyncError):
    """The requested mutation is malformed (empty batch, negative quantity, ...)."""


class StorageError(MenuSyncError):
    """The durable store rejected a read or write."""


class BroadcastUnavailable(MenuSyncError):
    """The transport could not deliver an event. Never fatal to a mutation."""


class ResyncRequired(MenuSyncError):
    """The client snapshot can no longer be trusted and must be rebuilt."""


class BootstrapFailed(MenuSyncError):
    """The full-menu fetch failed or timed out. Retryable."""

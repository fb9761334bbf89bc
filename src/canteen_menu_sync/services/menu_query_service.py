"""Read path for menu state: single items and full canteen menus."""

import logging
import time

from canteen_menu_sync.exceptions import CanteenNotFound
from canteen_menu_sync.models.menu_models import Canteen, MenuItem
from canteen_menu_sync.observability import metrics, traced
from canteen_menu_sync.repositories.menu_repositories import CanteenRepository, MenuItemRepository

logger = logging.getLogger(__name__)


class MenuQueryService:
    """Serves strongly consistent menu reads.

    ``fetch_full_menu`` is what clients bootstrap and resync from, so it never
    reads from a cache. It has no side effects and may be called any number
    of times.
    """

    def __init__(
        self,
        menu_repository: MenuItemRepository,
        canteen_repository: CanteenRepository,
    ) -> None:
        """Initialize the MenuQueryService.

        Args:
            menu_repository: Durable store for menu items
            canteen_repository: Durable store for canteens
        """
        self.menu_repository = menu_repository
        self.canteen_repository = canteen_repository

    @traced("menu.fetch_full_menu")
    async def fetch_full_menu(self, canteen_id: str) -> list[MenuItem]:
        """Return every item of a canteen, ordered by category then name.

        Disabled and sold-out items are included; clients decide how to show them.

        Args:
            canteen_id: The canteen to read

        Returns:
            Ordered list of MenuItem (empty if the canteen has no items)

        Raises:
            StorageError: If the durable store cannot be read
        """
        started = time.perf_counter()
        items = self.menu_repository.read_all_menu_items(canteen_id)
        items.sort(key=lambda i: (i.category.lower(), i.name.lower(), i.item_id))
        metrics.record_bootstrap_duration(canteen_id, time.perf_counter() - started)

        logger.info(f"Served full menu for canteen {canteen_id}: {len(items)} items")
        return items

    async def get_item(self, item_id: str) -> MenuItem | None:
        """Return one menu item, or None if it does not exist."""
        return self.menu_repository.read_menu_item(item_id)

    async def get_canteen(self, canteen_id: str) -> Canteen:
        """Return a canteen record.

        Raises:
            CanteenNotFound: If the canteen does not exist
        """
        canteen = self.canteen_repository.get_canteen(canteen_id)
        if canteen is None:
            raise CanteenNotFound(canteen_id)
        return canteen

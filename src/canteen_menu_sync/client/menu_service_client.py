"""Client for fetching full canteen menus from the menu sync API."""

import logging

import httpx
from pydantic import ValidationError

from canteen_menu_sync.models.menu_models import MenuItem

logger = logging.getLogger(__name__)


class MenuServiceClient:
    """HTTP client for the bootstrap endpoint.

    Used by the reconciliation engine to establish or restore its baseline.
    Follows a simple error contract: None on any failure, so the caller can
    decide whether to retry.
    """

    def __init__(self, base_url: str, timeout: float = 5.0) -> None:
        """Initialize the menu client.

        Args:
            base_url: Base URL of the menu sync API (e.g., "http://localhost:8001")
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch_full_menu(self, canteen_id: str) -> list[MenuItem] | None:
        """Fetch every menu item of a canteen.

        Args:
            canteen_id: The canteen to fetch the menu for

        Returns:
            List of MenuItem objects, empty list if the menu is empty, or None on failure
        """
        url = f"{self.base_url}/canteens/{canteen_id}/menu"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()

            return [MenuItem(**item_data) for item_data in data.get("items", [])]

        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(f"Failed to fetch menu for canteen {canteen_id}: {e}")
            return None
        except (ValidationError, ValueError) as e:
            logger.error(f"Malformed menu response for canteen {canteen_id}: {e}")
            return None

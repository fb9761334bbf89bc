"""FastAPI application: menu reads, admin mutations and the realtime socket."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import Depends, FastAPI, Header, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from canteen_menu_sync.auth.api_dependencies import get_role_from_header, require_mutating_role
from canteen_menu_sync.auth.api_key_validator import APIKeyValidator
from canteen_menu_sync.exceptions import (
    CanteenNotFound,
    DuplicateItem,
    InsufficientStock,
    InvalidMutation,
    ItemNotFound,
    MenuSyncError,
    StorageError,
)
from canteen_menu_sync.models.menu_models import Canteen, MenuItem, NewMenuItem
from canteen_menu_sync.realtime.broadcaster import EventBroadcaster
from canteen_menu_sync.realtime.connection_registry import ConnectionRegistry
from canteen_menu_sync.realtime.websocket_handler import run_heartbeat_reaper, serve_websocket
from canteen_menu_sync.services.inventory_service import BulkStockChange, InventoryService
from canteen_menu_sync.services.menu_query_service import MenuQueryService

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[MenuSyncError], int] = {
    ItemNotFound: 404,
    CanteenNotFound: 404,
    InsufficientStock: 409,
    DuplicateItem: 409,
    InvalidMutation: 400,
    StorageError: 503,
}


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    connections: int
    broadcaster_running: bool


class MenuResponse(BaseModel):
    """Full menu of one canteen, used for bootstrap and resync."""

    canteen_id: str
    items: list[MenuItem]


class QuantityChangeRequest(BaseModel):
    quantity_change: int


class StockSetRequest(BaseModel):
    quantity: int = Field(..., ge=0)


class AvailabilityRequest(BaseModel):
    is_available: bool


class BulkUpdateRequest(BaseModel):
    updates: list[BulkStockChange]


class BulkUpdateResponse(BaseModel):
    canteen_id: str
    items: list[MenuItem]


class CanteenStatusRequest(BaseModel):
    is_open: bool


class RemoveItemResponse(BaseModel):
    item_id: str
    removed: bool


def create_app(
    inventory_service: InventoryService,
    menu_query_service: MenuQueryService,
    registry: ConnectionRegistry,
    broadcaster: EventBroadcaster,
    api_keys: dict[str, str],
    heartbeat_timeout_seconds: float = 60.0,
    reaper_interval_seconds: float = 15.0,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        inventory_service: Single writer of menu state
        menu_query_service: Read path used for bootstrap and item lookups
        registry: Connection registry shared with the broadcaster
        broadcaster: Broadcaster started and stopped with the application
        api_keys: Mapping of valid API keys to caller roles
        heartbeat_timeout_seconds: Silence after which a socket is reaped
        reaper_interval_seconds: How often the reaper runs

    Returns:
        Configured FastAPI application
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        broadcaster.start()
        reaper = asyncio.create_task(
            run_heartbeat_reaper(registry, heartbeat_timeout_seconds, reaper_interval_seconds)
        )
        try:
            yield
        finally:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
            broadcaster.stop()

    app = FastAPI(
        title="Canteen Menu Sync API",
        description="Authoritative menu inventory with realtime propagation to connected clients",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Store services in app state for access in route handlers
    app.state.inventory_service = inventory_service
    app.state.menu_query_service = menu_query_service
    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.api_key_validator = APIKeyValidator(api_keys=api_keys)

    @app.exception_handler(MenuSyncError)
    async def menu_sync_error_handler(request: Request, exc: MenuSyncError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(type(exc), 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error_code": exc.error_code, "details": exc.details},
        )

    def validate_api_key(x_api_key: str | None = Header(None)) -> str:
        """Dependency to resolve the caller's role."""
        return get_role_from_header(x_api_key=x_api_key, validator=app.state.api_key_validator)

    def authorize_mutation(role: str = Depends(validate_api_key)) -> str:
        """Dependency to ensure the caller may modify the menu."""
        return require_mutating_role(role)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            connections=app.state.registry.connection_count,
            broadcaster_running=app.state.broadcaster.running,
        )

    @app.get("/canteens/{canteen_id}/menu", response_model=MenuResponse, tags=["Menu"])
    async def get_full_menu(canteen_id: str) -> MenuResponse:
        """Full menu of a canteen, read with strong consistency."""
        items = await app.state.menu_query_service.fetch_full_menu(canteen_id)
        return MenuResponse(canteen_id=canteen_id, items=items)

    @app.get("/canteens/{canteen_id}", response_model=Canteen, tags=["Menu"])
    async def get_canteen(canteen_id: str) -> Canteen:
        canteen: Canteen = await app.state.menu_query_service.get_canteen(canteen_id)
        return canteen

    @app.get("/menu/{item_id}", response_model=MenuItem, tags=["Menu"])
    async def get_menu_item(item_id: str) -> MenuItem:
        item = await app.state.menu_query_service.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    @app.post(
        "/admin/canteens/{canteen_id}/menu",
        response_model=MenuItem,
        status_code=201,
        tags=["Admin"],
    )
    async def create_menu_item(
        canteen_id: str,
        body: NewMenuItem,
        _role: str = Depends(authorize_mutation),
    ) -> MenuItem:
        """Add an item to a canteen menu."""
        item: MenuItem = await app.state.inventory_service.create_item(canteen_id, body)
        return item

    @app.patch("/admin/menu/{item_id}/quantity", response_model=MenuItem, tags=["Admin"])
    async def update_quantity(
        item_id: str,
        body: QuantityChangeRequest,
        _role: str = Depends(authorize_mutation),
    ) -> MenuItem:
        """Increase or decrease stock by a signed amount."""
        item: MenuItem = await app.state.inventory_service.set_quantity_delta(
            item_id, body.quantity_change
        )
        return item

    @app.put("/admin/stock/{item_id}", response_model=MenuItem, tags=["Admin"])
    async def set_stock(
        item_id: str,
        body: StockSetRequest,
        _role: str = Depends(authorize_mutation),
    ) -> MenuItem:
        """Set the exact stock of an item."""
        item: MenuItem = await app.state.inventory_service.set_quantity(item_id, body.quantity)
        return item

    @app.patch("/admin/stock/{item_id}/availability", response_model=MenuItem, tags=["Admin"])
    async def set_availability(
        item_id: str,
        body: AvailabilityRequest,
        _role: str = Depends(authorize_mutation),
    ) -> MenuItem:
        """Switch an item on or off."""
        item: MenuItem = await app.state.inventory_service.set_availability(
            item_id, body.is_available
        )
        return item

    @app.delete("/admin/menu/{item_id}", response_model=RemoveItemResponse, tags=["Admin"])
    async def remove_menu_item(
        item_id: str,
        _role: str = Depends(authorize_mutation),
    ) -> RemoveItemResponse:
        """Remove an item from its canteen menu."""
        await app.state.inventory_service.remove_item(item_id)
        return RemoveItemResponse(item_id=item_id, removed=True)

    @app.post(
        "/admin/canteens/{canteen_id}/stock/bulk-update",
        response_model=BulkUpdateResponse,
        tags=["Admin"],
    )
    async def bulk_update_stock(
        canteen_id: str,
        body: BulkUpdateRequest,
        _role: str = Depends(authorize_mutation),
    ) -> BulkUpdateResponse:
        """Apply several stock changes in one all-or-nothing commit."""
        logger.info(f"Bulk update requested for canteen {canteen_id}: {len(body.updates)} entries")
        items = await app.state.inventory_service.bulk_apply(canteen_id, body.updates)
        return BulkUpdateResponse(canteen_id=canteen_id, items=items)

    @app.patch("/admin/canteens/{canteen_id}/status", response_model=Canteen, tags=["Admin"])
    async def set_canteen_status(
        canteen_id: str,
        body: CanteenStatusRequest,
        _role: str = Depends(authorize_mutation),
    ) -> Canteen:
        """Open or close a canteen."""
        canteen: Canteen = await app.state.inventory_service.set_canteen_status(
            canteen_id, body.is_open
        )
        return canteen

    @app.websocket("/ws")
    async def realtime_socket(websocket: WebSocket) -> None:
        """Realtime menu updates. See websocket_handler for the message protocol."""
        await serve_websocket(websocket, app.state.registry)

    return app

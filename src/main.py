"""Main application entry point for the canteen menu sync service.

This module provides the FastAPI application factory and configuration
for running the service locally or in production.
"""

import logging
import os
from typing import Any

import boto3
from fastapi import FastAPI

from canteen_menu_sync.auth.api_key_validator import parse_api_keys
from canteen_menu_sync.handlers.api_handler import create_app
from canteen_menu_sync.models.event_models import DEFAULT_LOW_STOCK_THRESHOLD
from canteen_menu_sync.observability import configure_logging, setup_observability
from canteen_menu_sync.realtime.broadcaster import EventBroadcaster
from canteen_menu_sync.realtime.connection_registry import ConnectionRegistry
from canteen_menu_sync.repositories.menu_repositories import CanteenRepository, MenuItemRepository
from canteen_menu_sync.services.inventory_service import InventoryService
from canteen_menu_sync.services.menu_query_service import MenuQueryService

logger = logging.getLogger(__name__)


def get_dynamodb_resource() -> Any:
    """Create DynamoDB resource with appropriate configuration.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        return boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )

    logger.info(f"Using AWS DynamoDB in region {region}")
    # Production - boto3 will use default credential chain (IAM role, env vars, etc.)
    return boto3.resource("dynamodb", region_name=region)


def env_flag(name: str, default: bool) -> bool:
    """Read a boolean environment variable ("true"/"false")."""
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application with all dependencies.

    This factory function:
    1. Configures logging
    2. Creates the DynamoDB repositories
    3. Builds the connection registry and the broadcaster
    4. Creates the inventory and query services
    5. Creates the FastAPI app and sets up observability

    Returns:
        Configured FastAPI application instance
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    logger.info("Initializing canteen menu sync service...")

    dynamodb_resource = get_dynamodb_resource()

    menu_items_table = os.getenv("DYNAMODB_MENU_ITEMS_TABLE", "canteen-menu-items")
    canteens_table = os.getenv("DYNAMODB_CANTEENS_TABLE", "canteen-canteens")

    menu_repository = MenuItemRepository(
        dynamodb_resource=dynamodb_resource, table_name=menu_items_table
    )
    canteen_repository = CanteenRepository(
        dynamodb_resource=dynamodb_resource, table_name=canteens_table
    )

    logger.info(f"Repositories configured - items: {menu_items_table}, canteens: {canteens_table}")

    registry = ConnectionRegistry()
    broadcaster = EventBroadcaster(
        registry=registry,
        enable_global_feed=env_flag("ENABLE_GLOBAL_FEED", True),
    )

    low_stock_threshold = int(os.getenv("LOW_STOCK_THRESHOLD", str(DEFAULT_LOW_STOCK_THRESHOLD)))
    inventory_service = InventoryService(
        menu_repository=menu_repository,
        canteen_repository=canteen_repository,
        broadcaster=broadcaster,
        low_stock_threshold=low_stock_threshold,
    )
    menu_query_service = MenuQueryService(
        menu_repository=menu_repository,
        canteen_repository=canteen_repository,
    )

    logger.info(f"Services initialized (low stock threshold: {low_stock_threshold})")

    api_keys = parse_api_keys(os.getenv("ADMIN_API_KEYS", ""))
    if not api_keys:
        logger.warning("No ADMIN_API_KEYS configured - admin endpoints will not be accessible")
        api_keys = {"dummy-key-for-development": "viewer"}

    app = create_app(
        inventory_service=inventory_service,
        menu_query_service=menu_query_service,
        registry=registry,
        broadcaster=broadcaster,
        api_keys=api_keys,
        heartbeat_timeout_seconds=float(os.getenv("HEARTBEAT_TIMEOUT_SECONDS", "60")),
        reaper_interval_seconds=float(os.getenv("REAPER_INTERVAL_SECONDS", "15")),
    )

    setup_observability(app)

    logger.info("Canteen menu sync service initialized successfully")

    return app


# Create the FastAPI application instance (only when not in test mode)
# This prevents the app from being created during test collection
if os.getenv("ENVIRONMENT") != "test":  # noqa: SIM108
    app = create_application()
else:
    # Create a placeholder app for test imports
    app = FastAPI()


if __name__ == "__main__":
    """Run the application with uvicorn when executed directly."""
    import uvicorn

    port = int(os.getenv("PORT", "8001"))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting development server on {host}:{port}")
    logger.info(f"API documentation available at http://{host}:{port}/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )

"""Unit tests for main application entry point."""

import os
from unittest.mock import MagicMock, Mock, patch

import pytest
from fastapi import FastAPI

from src.main import create_application, env_flag, get_dynamodb_resource


@pytest.mark.unit
class TestGetDynamoDBResource:
    """Tests for get_dynamodb_resource function."""

    @patch.dict(os.environ, {"DYNAMODB_ENDPOINT": "", "AWS_REGION": "us-west-2"}, clear=True)
    @patch("src.main.boto3.resource")
    def test_creates_aws_resource_when_no_endpoint(self, mock_boto3_resource: Mock) -> None:
        """Test that AWS DynamoDB resource is created when no local endpoint configured."""
        mock_resource = MagicMock()
        mock_boto3_resource.return_value = mock_resource

        result = get_dynamodb_resource()

        mock_boto3_resource.assert_called_once_with("dynamodb", region_name="us-west-2")
        assert result == mock_resource

    @patch.dict(
        os.environ,
        {
            "DYNAMODB_ENDPOINT": "http://localhost:8000",
            "AWS_ACCESS_KEY_ID": "local",
            "AWS_SECRET_ACCESS_KEY": "local-secret",
        },
        clear=True,
    )
    @patch("src.main.boto3.resource")
    def test_creates_local_resource_when_endpoint_provided(self, mock_boto3_resource: Mock) -> None:
        """Test that local DynamoDB resource is created when endpoint configured."""
        get_dynamodb_resource()

        mock_boto3_resource.assert_called_once_with(
            "dynamodb",
            endpoint_url="http://localhost:8000",
            region_name="us-east-1",
            aws_access_key_id="local",
            aws_secret_access_key="local-secret",
        )


@pytest.mark.unit
class TestEnvFlag:
    """Tests for env_flag helper."""

    @patch.dict(os.environ, {"ENABLE_GLOBAL_FEED": "false"}, clear=True)
    def test_reads_false(self) -> None:
        """Test that an explicit false disables the flag."""
        assert env_flag("ENABLE_GLOBAL_FEED", True) is False

    @patch.dict(os.environ, {}, clear=True)
    def test_uses_default(self) -> None:
        """Test that a missing variable falls back to the default."""
        assert env_flag("ENABLE_GLOBAL_FEED", True) is True
        assert env_flag("ENABLE_GLOBAL_FEED", False) is False


@pytest.mark.unit
class TestCreateApplication:
    """Tests for create_application function."""

    @patch("src.main.setup_observability")
    @patch("src.main.configure_logging")
    @patch("src.main.get_dynamodb_resource")
    @patch("src.main.MenuItemRepository")
    @patch("src.main.CanteenRepository")
    @patch("src.main.EventBroadcaster")
    @patch("src.main.InventoryService")
    @patch("src.main.MenuQueryService")
    @patch("src.main.create_app")
    @patch.dict(
        os.environ,
        {
            "LOG_LEVEL": "DEBUG",
            "DYNAMODB_MENU_ITEMS_TABLE": "test-items",
            "DYNAMODB_CANTEENS_TABLE": "test-canteens",
            "LOW_STOCK_THRESHOLD": "3",
            "ENABLE_GLOBAL_FEED": "false",
            "HEARTBEAT_TIMEOUT_SECONDS": "30",
            "ADMIN_API_KEYS": "k1:admin,k2",
        },
        clear=True,
    )
    def test_creates_application_with_all_dependencies(
        self,
        mock_create_app: Mock,
        mock_query_service: Mock,
        mock_inventory_service: Mock,
        mock_broadcaster: Mock,
        mock_canteen_repo: Mock,
        mock_menu_repo: Mock,
        mock_get_dynamodb: Mock,
        mock_configure_logging: Mock,
        mock_setup_observability: Mock,
    ) -> None:
        """Test that application is created with all dependencies properly wired."""
        mock_dynamodb = MagicMock()
        mock_get_dynamodb.return_value = mock_dynamodb
        mock_app = MagicMock(spec=FastAPI)
        mock_create_app.return_value = mock_app

        result = create_application()

        mock_configure_logging.assert_called_once_with("DEBUG")
        mock_menu_repo.assert_called_once_with(dynamodb_resource=mock_dynamodb, table_name="test-items")
        mock_canteen_repo.assert_called_once_with(
            dynamodb_resource=mock_dynamodb, table_name="test-canteens"
        )
        assert mock_broadcaster.call_args.kwargs["enable_global_feed"] is False
        mock_inventory_service.assert_called_once_with(
            menu_repository=mock_menu_repo.return_value,
            canteen_repository=mock_canteen_repo.return_value,
            broadcaster=mock_broadcaster.return_value,
            low_stock_threshold=3,
        )

        kwargs = mock_create_app.call_args.kwargs
        assert kwargs["inventory_service"] is mock_inventory_service.return_value
        assert kwargs["menu_query_service"] is mock_query_service.return_value
        assert kwargs["api_keys"] == {"k1": "admin", "k2": "staff"}
        assert kwargs["heartbeat_timeout_seconds"] == 30.0
        assert kwargs["reaper_interval_seconds"] == 15.0

        mock_setup_observability.assert_called_once_with(mock_app)
        assert result == mock_app

    @patch("src.main.setup_observability")
    @patch("src.main.configure_logging")
    @patch("src.main.get_dynamodb_resource")
    @patch("src.main.create_app")
    @patch.dict(os.environ, {"ADMIN_API_KEYS": ""}, clear=True)
    def test_uses_read_only_dummy_key_when_none_configured(
        self,
        mock_create_app: Mock,
        mock_get_dynamodb: Mock,
        mock_configure_logging: Mock,
        mock_setup_observability: Mock,
    ) -> None:
        """Test that a read-only placeholder key is used when ADMIN_API_KEYS is empty."""
        mock_get_dynamodb.return_value = MagicMock()
        mock_create_app.return_value = MagicMock(spec=FastAPI)

        create_application()

        assert mock_create_app.call_args.kwargs["api_keys"] == {
            "dummy-key-for-development": "viewer"
        }

"""DynamoDB repository classes for menu models.

These repositories are the durable source of truth for menu state. A missing
record is reported as None; any error from DynamoDB is logged and raised as
StorageError, since a failed commit must fail the request that caused it.
"""

import logging

from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from canteen_menu_sync.exceptions import StorageError
from canteen_menu_sync.models.menu_models import Canteen, MenuItem

logger = logging.getLogger(__name__)

# DynamoDB caps a single transaction at 100 operations
MAX_TRANSACTION_ITEMS = 100


class MenuItemRepository:
    """Repository for menu item CRUD operations.

    Manages menu item records in DynamoDB with item_id as partition key.
    All reads are strongly consistent.
    """

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)
        self._serializer = TypeSerializer()

    def read_menu_item(self, item_id: str) -> MenuItem | None:
        """Retrieve a menu item by ID.

        Args:
            item_id: Menu item identifier

        Returns:
            MenuItem if found, None otherwise

        Raises:
            StorageError: If DynamoDB rejects the read
        """
        try:
            response = self.table.get_item(Key={"item_id": item_id}, ConsistentRead=True)
        except ClientError as e:
            logger.error(f"Failed to read menu item {item_id}: {e}")
            raise StorageError(f"Failed to read menu item {item_id}") from e

        if "Item" not in response:
            return None

        return MenuItem.from_dynamodb_item(response["Item"])

    def write_menu_item(self, item: MenuItem) -> None:
        """Create or replace a menu item.

        Args:
            item: MenuItem to save

        Raises:
            StorageError: If DynamoDB rejects the write
        """
        try:
            self.table.put_item(Item=item.to_dynamodb_item())
        except ClientError as e:
            logger.error(f"Failed to write menu item {item.item_id}: {e}")
            raise StorageError(f"Failed to write menu item {item.item_id}") from e

    def write_menu_items(self, items: list[MenuItem]) -> None:
        """Write several menu items in one all-or-nothing transaction.

        Args:
            items: MenuItems to save (at most MAX_TRANSACTION_ITEMS)

        Raises:
            StorageError: If the batch is too large or the transaction fails
        """
        if not items:
            return

        if len(items) > MAX_TRANSACTION_ITEMS:
            raise StorageError(
                f"Cannot write {len(items)} items in one transaction "
                f"(limit {MAX_TRANSACTION_ITEMS})"
            )

        transact_items = [
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": {
                        key: self._serializer.serialize(value)
                        for key, value in item.to_dynamodb_item().items()
                    },
                }
            }
            for item in items
        ]

        try:
            self.dynamodb.meta.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            logger.error(f"Failed to write {len(items)} menu items: {e}")
            raise StorageError(f"Failed to write {len(items)} menu items") from e

    def delete_menu_item(self, item_id: str) -> None:
        """Delete a menu item.

        Args:
            item_id: Menu item identifier

        Raises:
            StorageError: If DynamoDB rejects the delete
        """
        try:
            self.table.delete_item(Key={"item_id": item_id})
        except ClientError as e:
            logger.error(f"Failed to delete menu item {item_id}: {e}")
            raise StorageError(f"Failed to delete menu item {item_id}") from e

    def read_all_menu_items(self, canteen_id: str) -> list[MenuItem]:
        """List every menu item of a canteen.

        Uses a strongly consistent scan rather than a secondary index, because
        index reads are only eventually consistent and this listing is what
        clients rebuild their state from.

        Args:
            canteen_id: Canteen identifier

        Returns:
            list: List of MenuItem objects (empty list if none found)

        Raises:
            StorageError: If DynamoDB rejects the scan
        """
        items: list[MenuItem] = []
        scan_kwargs: dict = {
            "FilterExpression": Attr("canteen_id").eq(canteen_id),
            "ConsistentRead": True,
        }

        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                items.extend(MenuItem.from_dynamodb_item(raw) for raw in response.get("Items", []))

                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key

        except ClientError as e:
            logger.error(f"Failed to list menu items for canteen {canteen_id}: {e}")
            raise StorageError(f"Failed to list menu items for canteen {canteen_id}") from e

        return items


class CanteenRepository:
    """Repository for canteen records.

    Manages canteen records in DynamoDB with canteen_id as partition key.
    """

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)

    def get_canteen(self, canteen_id: str) -> Canteen | None:
        """Retrieve a canteen by ID.

        Args:
            canteen_id: Canteen identifier

        Returns:
            Canteen if found, None otherwise

        Raises:
            StorageError: If DynamoDB rejects the read
        """
        try:
            response = self.table.get_item(Key={"canteen_id": canteen_id}, ConsistentRead=True)
        except ClientError as e:
            logger.error(f"Failed to read canteen {canteen_id}: {e}")
            raise StorageError(f"Failed to read canteen {canteen_id}") from e

        if "Item" not in response:
            return None

        return Canteen.from_dynamodb_item(response["Item"])

    def save_canteen(self, canteen: Canteen) -> None:
        """Create or replace a canteen record.

        Args:
            canteen: Canteen to save

        Raises:
            StorageError: If DynamoDB rejects the write
        """
        try:
            self.table.put_item(Item=canteen.to_dynamodb_item())
        except ClientError as e:
            logger.error(f"Failed to save canteen {canteen.canteen_id}: {e}")
            raise StorageError(f"Failed to save canteen {canteen.canteen_id}") from e

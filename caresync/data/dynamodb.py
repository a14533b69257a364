"""DynamoDB utilities and table definitions."""

import logging
from typing import Any, Dict, Iterator, List, Optional

import boto3
from botocore.exceptions import ClientError

from caresync.utils.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

THROUGHPUT = {"ReadCapacityUnits": 5, "WriteCapacityUnits": 5}


def _table_specs() -> Dict[str, Dict[str, Any]]:
    """Key schema and indexes for every table the service owns."""
    return {
        settings.dynamodb_readings_table: {
            "keys": [("user_id", "HASH"), ("timestamp", "RANGE")],
            "attributes": {"user_id": "S", "timestamp": "S"},
        },
        settings.dynamodb_alerts_table: {
            "keys": [("alert_id", "HASH")],
            "attributes": {"alert_id": "S", "user_id": "S", "created_at": "S"},
            "indexes": {"UserCreatedIndex": [("user_id", "HASH"), ("created_at", "RANGE")]},
        },
        settings.dynamodb_sessions_table: {
            "keys": [("user_id", "HASH"), ("provider", "RANGE")],
            "attributes": {"user_id": "S", "provider": "S"},
        },
        settings.dynamodb_care_table: {
            "keys": [("relationship_id", "HASH")],
            "attributes": {"relationship_id": "S", "owner_id": "S"},
            "indexes": {"OwnerIndex": [("owner_id", "HASH")]},
        },
        settings.dynamodb_profiles_table: {
            "keys": [("user_id", "HASH")],
            "attributes": {"user_id": "S"},
        },
        settings.dynamodb_chat_table: {
            "keys": [("conversation_id", "HASH"), ("sort_key", "RANGE")],
            "attributes": {"conversation_id": "S", "sort_key": "S"},
        },
    }


def _key_schema(keys) -> List[Dict[str, str]]:
    return [{"AttributeName": name, "KeyType": key_type} for name, key_type in keys]


class DynamoDBClient:
    """DynamoDB client wrapper with table utilities."""

    def __init__(self):
        """Initialize the DynamoDB client."""
        credentials = dict(
            region_name=settings.aws_region,
            endpoint_url=settings.dynamodb_endpoint,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=(
                settings.aws_secret_access_key.get_secret_value()
                if settings.aws_secret_access_key
                else None
            ),
        )
        self.client = boto3.client("dynamodb", **credentials)
        self.resource = boto3.resource("dynamodb", **credentials)

    def _create_table(self, table_name: str, spec: Dict[str, Any], wait: bool = True) -> Dict[str, Any]:
        """
        Create a table if it doesn't exist.

        Args:
            table_name: Name of the table
            spec: Key schema, attribute types and global secondary indexes
            wait: Wait for the table to be created if True

        Returns:
            Dict: Table description
        """
        kwargs: Dict[str, Any] = {
            "TableName": table_name,
            "KeySchema": _key_schema(spec["keys"]),
            "AttributeDefinitions": [
                {"AttributeName": name, "AttributeType": attr_type}
                for name, attr_type in spec["attributes"].items()
            ],
            "ProvisionedThroughput": THROUGHPUT,
        }
        if spec.get("indexes"):
            kwargs["GlobalSecondaryIndexes"] = [
                {
                    "IndexName": index_name,
                    "KeySchema": _key_schema(keys),
                    "Projection": {"ProjectionType": "ALL"},
                    "ProvisionedThroughput": THROUGHPUT,
                }
                for index_name, keys in spec["indexes"].items()
            ]
        try:
            table = self.client.create_table(**kwargs)
            if wait:
                waiter = self.client.get_waiter("table_exists")
                waiter.wait(TableName=table_name)
            return table
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                logger.info(f"Table {table_name} already exists.")
                return self.client.describe_table(TableName=table_name)
            logger.error(f"Error creating table {table_name}: {e}")
            raise

    def create_all_tables(self, wait: bool = True) -> Dict[str, Dict[str, Any]]:
        """
        Create all required tables if they don't exist.

        Args:
            wait: Wait for the tables to be created if True

        Returns:
            Dict: Table descriptions keyed by table name
        """
        return {name: self._create_table(name, spec, wait) for name, spec in _table_specs().items()}

    def get_table(self, table_name: str):
        return self.resource.Table(table_name)

    def put_item(self, table_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        return self.get_table(table_name).put_item(Item=item)

    def get_item(self, table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Get an item from a DynamoDB table.

        Returns:
            Dict: Item from DynamoDB or None if not found
        """
        response = self.get_table(table_name).get_item(Key=key)
        return response.get("Item")

    def update_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        update_expression: str,
        expression_attribute_values: Dict[str, Any],
        expression_attribute_names: Optional[Dict[str, str]] = None,
        condition_expression: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Update an item in a DynamoDB table.

        Args:
            table_name: Name of the table
            key: Key to update
            update_expression: Update expression
            expression_attribute_values: Expression attribute values
            expression_attribute_names: Expression attribute names
            condition_expression: Condition expression

        Returns:
            Dict: Response from DynamoDB
        """
        update_kwargs = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_attribute_values,
            "ReturnValues": "ALL_NEW"
        }
        if expression_attribute_names:
            update_kwargs["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            update_kwargs["ConditionExpression"] = condition_expression
        return self.get_table(table_name).update_item(**update_kwargs)

    def query(
        self,
        table_name: str,
        key_condition_expression: Any,
        index_name: Optional[str] = None,
        filter_expression: Optional[Any] = None,
        limit: Optional[int] = None,
        scan_index_forward: bool = True,
        exclusive_start_key: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Query a DynamoDB table.

        Args:
            table_name: Name of the table
            key_condition_expression: boto3 Key condition
            index_name: Name of the index to query
            filter_expression: boto3 Attr condition
            limit: Maximum number of items to evaluate
            scan_index_forward: Ascending sort-key order if True
            exclusive_start_key: Exclusive start key for pagination

        Returns:
            Dict: Response from DynamoDB
        """
        query_kwargs: Dict[str, Any] = {
            "KeyConditionExpression": key_condition_expression,
            "ScanIndexForward": scan_index_forward,
        }
        if index_name:
            query_kwargs["IndexName"] = index_name
        if filter_expression is not None:
            query_kwargs["FilterExpression"] = filter_expression
        if limit:
            query_kwargs["Limit"] = limit
        if exclusive_start_key:
            query_kwargs["ExclusiveStartKey"] = exclusive_start_key
        return self.get_table(table_name).query(**query_kwargs)

    def query_items(self, table_name: str, key_condition_expression: Any, **kwargs) -> Iterator[Dict[str, Any]]:
        """Yield every item matching the query, following pagination."""
        start_key = None
        while True:
            result = self.query(table_name, key_condition_expression, exclusive_start_key=start_key, **kwargs)
            yield from result.get("Items", [])
            start_key = result.get("LastEvaluatedKey")
            if not start_key:
                return

    def scan_items(self, table_name: str, filter_expression: Optional[Any] = None) -> Iterator[Dict[str, Any]]:
        """Yield every item of a table scan, following pagination."""
        table = self.get_table(table_name)
        scan_kwargs: Dict[str, Any] = {}
        if filter_expression is not None:
            scan_kwargs["FilterExpression"] = filter_expression
        while True:
            result = table.scan(**scan_kwargs)
            yield from result.get("Items", [])
            if not result.get("LastEvaluatedKey"):
                return
            scan_kwargs["ExclusiveStartKey"] = result["LastEvaluatedKey"]


# Singleton instance for reuse
_dynamodb_client: Optional[DynamoDBClient] = None


def get_dynamodb_client() -> DynamoDBClient:
    """
    Get a singleton instance of the DynamoDB client.

    Returns:
        DynamoDBClient: DynamoDB client
    """
    global _dynamodb_client
    if _dynamodb_client is None:
        _dynamodb_client = DynamoDBClient()
    return _dynamodb_client

"""DynamoDB access for the orders, payments and ipn-events tables.

Table names are ``{DYNAMODB_TABLE_PREFIX}-{table}``; the prefix defaults to
``payments-{ENVIRONMENT}``. Numbers come back from boto3 as Decimal and are
normalised to int (or float when fractional) before reaching the services.
"""

import os
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"

# Module-level singleton so Lambda invocations reuse the boto3 resource
_dynamodb_service_instance: "DynamoDBService | None" = None


def get_dynamodb_service(environment: str | None = None) -> "DynamoDBService":
    """Return the process-wide DynamoDBService, creating it on first use.

    Args:
        environment: Environment name. Only used on first call.
    """
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService(environment)
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Drop the singleton (for testing only).

    Tests call this so the next service is built inside their mock_aws context.
    """
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


def _is_condition_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


class DynamoDBService:
    """Thin wrapper over the boto3 table resource with prefixed table names."""

    def __init__(self, environment: str | None = None) -> None:
        """Initialize DynamoDB service.

        Args:
            environment: Environment name (dev/prod). Defaults to ENVIRONMENT env var.
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        # DYNAMODB_TABLE_PREFIX wins so tests and stacks can share one account
        self.name_prefix = os.getenv(
            "DYNAMODB_TABLE_PREFIX", f"payments-{self.environment}"
        )
        self._dynamodb = boto3.resource("dynamodb")

    def table_name(self, table: str) -> str:
        """Full table name for a short name such as ``payments``."""
        return f"{self.name_prefix}-{table}"

    def _table(self, table: str) -> Any:
        return self._dynamodb.Table(self.table_name(table))

    def get_item(self, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        """Strongly consistent read of one item.

        Args:
            table: Short table name
            key: Primary key

        Returns:
            The item, or None when it does not exist
        """
        response = self._table(table).get_item(Key=key, ConsistentRead=True)
        item = response.get("Item")
        return _from_dynamo(item) if item is not None else None

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
    ) -> bool:
        """Write an item, optionally guarded by a condition.

        Returns:
            False if the condition was not met, True otherwise
        """
        kwargs: dict[str, Any] = {"Item": item}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        try:
            self._table(table).put_item(**kwargs)
        except ClientError as e:
            if _is_condition_failure(e):
                return False
            raise
        return True

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply an update expression and return the item as written.

        State transitions pass ``#state = :from`` as the condition so a
        concurrent writer makes the update fail instead of being overwritten.

        Returns:
            All attributes after the update, or None if the condition failed
        """
        kwargs: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_attribute_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_attribute_names:
            kwargs["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        try:
            response = self._table(table).update_item(**kwargs)
        except ClientError as e:
            if _is_condition_failure(e):
                return None
            raise
        return _from_dynamo(response.get("Attributes"))

    def query(
        self,
        table: str,
        key_condition: Any,
        index_name: str | None = None,
        filter_expression: Any | None = None,
        limit: int | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        """Query a table or index, following pagination.

        ``limit`` caps the number of items returned after filtering, so a
        filtered query keeps reading pages until enough items match.
        """
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition,
            "ScanIndexForward": scan_index_forward,
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression

        items: list[dict[str, Any]] = []
        while True:
            response = self._table(table).query(**kwargs)
            items.extend(_from_dynamo(item) for item in response.get("Items", []))
            if limit is not None and len(items) >= limit:
                return items[:limit]
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def query_by_gsi(
        self,
        table: str,
        index_name: str,
        partition_key_name: str,
        partition_key_value: str,
        sort_key_condition: Any | None = None,
        filter_expression: Any | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Query a GSI on its partition key (plus optional sort key condition)."""
        key_condition = Key(partition_key_name).eq(partition_key_value)
        if sort_key_condition is not None:
            key_condition = key_condition & sort_key_condition
        return self.query(
            table,
            key_condition,
            index_name=index_name,
            filter_expression=filter_expression,
            limit=limit,
        )

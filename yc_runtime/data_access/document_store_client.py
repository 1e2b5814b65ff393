"""
YDB Document API client with conditional writes and batch operations.

The Document API speaks the DynamoDB wire protocol, so the client is a
thin layer over the boto3 DynamoDB resource pointed at the database's
Document API endpoint.
"""
import logging
from typing import Dict, Iterable, List, Optional, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import (
    DocumentStoreError,
    ConditionalCheckFailedError,
    RetryableError,
    RETRYABLE_ERROR_CODES,
    TRANSPORT_ERRORS,
)
from .retry import retry_with_backoff

logger = logging.getLogger(__name__)


class DocumentStoreClient:
    """
    Document API client with conditional writes, paginated queries and
    chunked batch writes.
    """

    def __init__(
        self,
        region: str = 'ru-central1',
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize Document API client.

        Args:
            region: Yandex Cloud region
            endpoint_url: Document API endpoint of the YDB database
        """
        self.dynamodb = boto3.resource(
            'dynamodb',
            region_name=region,
            endpoint_url=endpoint_url
        )

    def get_table(self, table_name: str):
        """
        Get table resource.

        Args:
            table_name: Name of the table

        Returns:
            Table resource
        """
        return self.dynamodb.Table(table_name)

    def _translate_error(self, error: Exception, action: str, table_name: str) -> Exception:
        if isinstance(error, TRANSPORT_ERRORS):
            logger.warning(f"Transport error during {action} on {table_name}: {error}")
            return RetryableError(f"Failed to {action}: {error}")
        if not isinstance(error, ClientError):
            logger.error(f"Error during {action} on {table_name}: {error}")
            return DocumentStoreError(f"Failed to {action}: {error}")
        code = error.response.get('Error', {}).get('Code', '')
        if code == 'ConditionalCheckFailedException':
            return ConditionalCheckFailedError("Conditional check failed")
        if code in RETRYABLE_ERROR_CODES:
            logger.warning(f"Transient error during {action} on {table_name}: {code}")
            return RetryableError(f"Failed to {action}: {code}")
        logger.error(f"Error during {action} on {table_name}: {error}")
        return DocumentStoreError(f"Failed to {action}: {error}")

    @retry_with_backoff()
    def get_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        consistent_read: bool = True
    ) -> Optional[Dict[str, Any]]:
        """
        Get item from table.

        Args:
            table_name: Name of the table
            key: Primary key of the item
            consistent_read: Whether to use consistent read

        Returns:
            Item dict or None if not found

        Raises:
            DocumentStoreError: On Document API errors
        """
        try:
            response = self.get_table(table_name).get_item(
                Key=key,
                ConsistentRead=consistent_read
            )
            return response.get('Item')
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, 'get item', table_name) from e

    @retry_with_backoff()
    def put_item(
        self,
        table_name: str,
        item: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Put item into table.

        Args:
            table_name: Name of the table
            item: Item to put
            condition_expression: Optional condition expression
            expression_attribute_values: Optional expression attribute values
            expression_attribute_names: Optional expression attribute names

        Raises:
            ConditionalCheckFailedError: If condition check fails
            DocumentStoreError: On other Document API errors
        """
        kwargs = {'Item': item}
        if condition_expression:
            kwargs['ConditionExpression'] = condition_expression
        if expression_attribute_values:
            kwargs['ExpressionAttributeValues'] = expression_attribute_values
        if expression_attribute_names:
            kwargs['ExpressionAttributeNames'] = expression_attribute_names

        try:
            self.get_table(table_name).put_item(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, 'put item', table_name) from e

    @retry_with_backoff()
    def delete_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Delete item from table. Deleting a missing item is not an error.

        Args:
            table_name: Name of the table
            key: Primary key of the item
            condition_expression: Optional condition expression
            expression_attribute_values: Optional expression attribute values
            expression_attribute_names: Optional expression attribute names

        Raises:
            ConditionalCheckFailedError: If condition check fails
            DocumentStoreError: On other Document API errors
        """
        kwargs = {'Key': key}
        if condition_expression:
            kwargs['ConditionExpression'] = condition_expression
        if expression_attribute_values:
            kwargs['ExpressionAttributeValues'] = expression_attribute_values
        if expression_attribute_names:
            kwargs['ExpressionAttributeNames'] = expression_attribute_names

        try:
            self.get_table(table_name).delete_item(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, 'delete item', table_name) from e

    @retry_with_backoff()
    def query(
        self,
        table_name: str,
        key_condition_expression: str,
        expression_attribute_values: Dict[str, Any],
        expression_attribute_names: Optional[Dict[str, str]] = None,
        consistent_read: bool = True
    ) -> List[Dict[str, Any]]:
        """
        Query table, following pagination until every page is read.

        Args:
            table_name: Name of the table
            key_condition_expression: Key condition expression
            expression_attribute_values: Expression attribute values
            expression_attribute_names: Optional expression attribute names
            consistent_read: Whether to use consistent read

        Returns:
            List of items

        Raises:
            DocumentStoreError: On Document API errors
        """
        table = self.get_table(table_name)
        kwargs = {
            'KeyConditionExpression': key_condition_expression,
            'ExpressionAttributeValues': expression_attribute_values,
            'ConsistentRead': consistent_read
        }
        if expression_attribute_names:
            kwargs['ExpressionAttributeNames'] = expression_attribute_names

        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = table.query(**kwargs)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    return items
                kwargs['ExclusiveStartKey'] = last_key
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, 'query table', table_name) from e

    def batch_write(
        self,
        table_name: str,
        items: Iterable[Dict[str, Any]],
        operation: str = 'put',
        chunk_size: int = 25
    ) -> int:
        """
        Batch write items, splitting them into chunks of at most chunk_size.

        Chunks are committed independently; a failure leaves the earlier
        chunks applied.

        Args:
            table_name: Name of the table
            items: Items to put, or keys to delete
            operation: 'put' or 'delete'
            chunk_size: Maximum number of rows per batch call

        Returns:
            Number of chunks written

        Raises:
            ValueError: On invalid operation or chunk size
            DocumentStoreError: On Document API errors
        """
        if operation not in ('put', 'delete'):
            raise ValueError(f"Invalid operation: {operation}")
        if chunk_size <= 0:
            raise ValueError(f"Invalid chunk size: {chunk_size}")

        chunks = 0
        for chunk in chunked(list(items), chunk_size):
            self._write_chunk(table_name, chunk, operation)
            chunks += 1
        return chunks

    @retry_with_backoff()
    def _write_chunk(
        self,
        table_name: str,
        chunk: List[Dict[str, Any]],
        operation: str
    ) -> None:
        try:
            with self.get_table(table_name).batch_writer() as batch:
                for item in chunk:
                    if operation == 'put':
                        batch.put_item(Item=item)
                    else:
                        batch.delete_item(Key=item)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, 'batch write', table_name) from e


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    """
    Split a list into consecutive chunks of at most size elements.

    Example:
        >>> list(chunked([1, 2, 3, 4, 5], 2))
        [[1, 2], [3, 4], [5]]
    """
    for start in range(0, len(items), size):
        yield items[start:start + size]

"""
Object Storage client for cached response bodies.

Yandex Object Storage implements the S3 API; the client wraps the boto3 S3
client and maps its errors onto the data access exception hierarchy.
"""
import logging
from typing import Dict, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import (
    ObjectStoreError,
    ObjectNotFoundError,
    RetryableError,
    RETRYABLE_ERROR_CODES,
    TRANSPORT_ERRORS,
)
from .retry import retry_with_backoff

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset(['NoSuchKey', '404', 'NotFound'])


class ObjectStorageClient:
    """
    Blob store adapter over the S3 API.
    """

    def __init__(
        self,
        bucket: str,
        region: str = 'ru-central1',
        endpoint_url: Optional[str] = None,
        s3_client=None
    ):
        """
        Initialize Object Storage client.

        Args:
            bucket: Bucket holding the cached bodies
            region: Yandex Cloud region
            endpoint_url: Object Storage endpoint
            s3_client: Optional boto3 S3 client for testing
        """
        self.bucket = bucket
        self.s3 = s3_client or boto3.client(
            's3',
            region_name=region,
            endpoint_url=endpoint_url,
            config=Config(retries={'max_attempts': 1})
        )

    def _translate_error(self, error: Exception, action: str, key: str) -> Exception:
        if isinstance(error, TRANSPORT_ERRORS):
            logger.warning(f"Transport error during {action} of {key}: {error}")
            return RetryableError(f"Failed to {action}: {error}")
        if not isinstance(error, ClientError):
            logger.error(f"Error during {action} of s3://{self.bucket}/{key}: {error}")
            return ObjectStoreError(f"Failed to {action}: {error}")
        code = error.response.get('Error', {}).get('Code', '')
        if code in NOT_FOUND_CODES:
            return ObjectNotFoundError(f"Object not found: {key}")
        if code in RETRYABLE_ERROR_CODES:
            logger.warning(f"Transient error during {action} of {key}: {code}")
            return RetryableError(f"Failed to {action}: {code}")
        logger.error(f"Error during {action} of s3://{self.bucket}/{key}: {error}")
        return ObjectStoreError(f"Failed to {action}: {error}")

    @retry_with_backoff()
    def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str = 'application/octet-stream',
        metadata: Optional[Dict[str, str]] = None,
        cache_control: Optional[str] = None
    ) -> None:
        """
        Upload an object.

        Args:
            key: Object key
            body: Object content
            content_type: Content-Type stored with the object
            metadata: Optional user metadata
            cache_control: Optional Cache-Control stored with the object

        Raises:
            ObjectStoreError: On Object Storage errors
        """
        params = {
            'Bucket': self.bucket,
            'Key': key,
            'Body': body,
            'ContentType': content_type,
            'Metadata': metadata or {},
        }
        if cache_control:
            params['CacheControl'] = cache_control
        try:
            self.s3.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, 'put object', key) from e

    def get_object(self, key: str) -> bytes:
        """
        Download an object.

        Args:
            key: Object key

        Returns:
            Object content

        Raises:
            ObjectNotFoundError: If the object does not exist
            ObjectStoreError: On other Object Storage errors
        """
        return self.get_object_with_type(key)[0]

    @retry_with_backoff()
    def get_object_with_type(self, key: str) -> Tuple[bytes, Optional[str]]:
        """Download an object together with its stored Content-Type."""
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            return response['Body'].read(), response.get('ContentType')
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, 'get object', key) from e

    @retry_with_backoff()
    def delete_object(self, key: str) -> None:
        """
        Delete an object. Deleting a missing object is not an error.

        Args:
            key: Object key

        Raises:
            ObjectStoreError: On Object Storage errors
        """
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            error = self._translate_error(e, 'delete object', key)
            if isinstance(error, ObjectNotFoundError):
                return
            raise error from e

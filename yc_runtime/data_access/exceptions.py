"""
Custom exceptions for the storage adapters.
"""
from botocore.exceptions import ConnectionError as BotoConnectionError, HTTPClientError


class StorageError(Exception):
    """Base exception for Object Storage and Document API operations."""
    pass


class DocumentStoreError(StorageError):
    """Exception raised for YDB Document API failures."""
    pass


class ObjectStoreError(StorageError):
    """Exception raised for Object Storage failures."""
    pass


class ObjectNotFoundError(ObjectStoreError):
    """Exception raised when an object does not exist in the bucket."""
    pass


class ConditionalCheckFailedError(DocumentStoreError):
    """Exception raised when a conditional write is rejected."""
    pass


class RetryableError(StorageError):
    """Exception raised for transient errors that can be retried."""
    pass


# Error codes both APIs use for throttling and transient server faults
RETRYABLE_ERROR_CODES = frozenset([
    'ProvisionedThroughputExceededException',
    'ThrottlingException',
    'RequestLimitExceeded',
    'InternalServerError',
    'InternalError',
    'ServiceUnavailable',
    'SlowDown',
])

# botocore failures below the API layer: refused or dropped connections and
# timeouts. Other BotoCoreError subclasses are treated as permanent.
TRANSPORT_ERRORS = (BotoConnectionError, HTTPClientError)

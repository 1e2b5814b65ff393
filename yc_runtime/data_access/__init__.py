"""
Data access layer for Object Storage and the YDB Document API.
"""
from .document_store_client import DocumentStoreClient
from .object_storage_client import ObjectStorageClient
from .cache_metadata_repository import CacheMetadataRepository
from .regeneration_locks_repository import RegenerationLocksRepository
from .exceptions import (
    StorageError,
    DocumentStoreError,
    ObjectStoreError,
    ObjectNotFoundError,
    ConditionalCheckFailedError,
    RetryableError,
)

__all__ = [
    'DocumentStoreClient',
    'ObjectStorageClient',
    'CacheMetadataRepository',
    'RegenerationLocksRepository',
    'StorageError',
    'DocumentStoreError',
    'ObjectStoreError',
    'ObjectNotFoundError',
    'ConditionalCheckFailedError',
    'RetryableError',
]

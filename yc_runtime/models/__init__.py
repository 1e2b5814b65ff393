"""
Data models for cache entries and the deployment manifest.
"""

from .cache_entry import (
    CacheEntry,
    blob_key,
    metadata_key,
    split_metadata_key,
    tag_partition_key,
    path_from_key,
)
from .manifest import (
    Capabilities,
    ISRCapabilities,
    MiddlewareCapabilities,
    ISRConfig,
    ISRTables,
    DeployManifest,
    load_manifest,
    create_default_manifest,
)

__all__ = [
    'CacheEntry',
    'blob_key',
    'metadata_key',
    'split_metadata_key',
    'tag_partition_key',
    'path_from_key',
    'Capabilities',
    'ISRCapabilities',
    'MiddlewareCapabilities',
    'ISRConfig',
    'ISRTables',
    'DeployManifest',
    'load_manifest',
    'create_default_manifest',
]

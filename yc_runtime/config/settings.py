"""
Runtime settings loaded from the function environment.

The infrastructure layer provisions the bucket, the Document API database
and the function, then passes their coordinates through environment
variables. This module centralizes the names and defaults of those
variables so every handler reads them the same way.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from ..exceptions import ConfigurationError

# ISR tables (YDB Document API)
ENTRIES_TABLE_NAME = 'isr_entries'
TAGS_TABLE_NAME = 'isr_tags'
PATHS_TABLE_NAME = 'isr_paths'
LOCKS_TABLE_NAME = 'isr_locks'

TABLE_NAME_ENV_VARS = {
    'ISR_ENTRIES_TABLE': ENTRIES_TABLE_NAME,
    'ISR_TAGS_TABLE': TAGS_TABLE_NAME,
    'ISR_PATHS_TABLE': PATHS_TABLE_NAME,
    'ISR_LOCKS_TABLE': LOCKS_TABLE_NAME,
}

DEFAULT_REGION = 'ru-central1'
DEFAULT_S3_ENDPOINT = 'https://storage.yandexcloud.net'

# Reference fan-out limit of the Document API BatchWriteItem call
DEFAULT_BATCH_WRITE_LIMIT = 25
DEFAULT_LOCK_TTL_SECONDS = 30
DEFAULT_RETENTION_SECONDS = 365 * 24 * 3600
DEFAULT_MIDDLEWARE_TIMEOUT_SECONDS = 5.0
DEFAULT_IMAGE_QUALITY = 75
DEFAULT_IMAGE_MAX_AGE_SECONDS = 365 * 24 * 3600


def get_table_name(table_key: str, default: Optional[str] = None) -> str:
    """
    Get table name from environment variable or use default constant.

    Supports both the short naming convention (``ISR_TAGS_TABLE``) and the
    ``_NAME`` suffixed one (``ISR_TAGS_TABLE_NAME``) emitted by older
    infrastructure modules.

    Args:
        table_key: Environment variable key (e.g., 'ISR_TAGS_TABLE')
        default: Default table name if environment variable not set

    Returns:
        Table name from environment or default

    Example:
        >>> os.environ['ISR_TAGS_TABLE'] = 'isr_tags_staging'
        >>> get_table_name('ISR_TAGS_TABLE')
        'isr_tags_staging'
    """
    if default is None:
        default = TABLE_NAME_ENV_VARS.get(table_key, '')

    value = os.getenv(table_key)
    if value:
        return value

    value = os.getenv(f'{table_key}_NAME')
    if value:
        return value

    return default


def _env_table(table_key: str) -> Optional[str]:
    # None lets the deployment manifest, then the default constant, decide.
    return get_table_name(table_key, default='') or None


def _env_list(name: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(name, '').split(',') if item.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f'{name} must be an integer, got {raw!r}')
    if value <= 0:
        raise ConfigurationError(f'{name} must be positive, got {value}')
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f'{name} must be a number, got {raw!r}')
    if value <= 0:
        raise ConfigurationError(f'{name} must be positive, got {value}')
    return value


@dataclass(frozen=True)
class RuntimeSettings:
    """
    Settings shared by the server, revalidation and image functions.

    Attributes:
        build_id: Deployment identifier; namespaces every cache key
        cache_bucket: Object Storage bucket holding cached bodies
        cache_key_prefix: First path segment of blob keys (None: manifest or 'cache')
        region: Yandex Cloud region
        s3_endpoint: Object Storage endpoint URL
        docapi_endpoint: YDB Document API endpoint (None uses the SDK default)
        entries_table: Metadata table name
        tags_table: Tag index table name
        paths_table: Path index table name
        locks_table: Regeneration lock table name
            (table names left as None come from the manifest, then the defaults)
        batch_write_limit: Maximum rows per index batch write
        lock_ttl_seconds: Lifetime of a regeneration lock row
        retention_seconds: Outer retention TTL written on every row
        middleware_timeout_seconds: Middleware execution timeout
        node_binary: Node.js executable used to run middleware
        project_root: Directory holding the unpacked Next.js build
        next_server_url: Upstream Next.js server URL
        revalidation_secret: Shared secret for the revalidation API
        revalidation_allowed_ips: IP allow-list for the revalidation API
        image_cache_bucket: Bucket for optimized images (None disables the image cache)
        image_sources_bucket: Bucket holding source images for relative URLs
        image_quality: Default encoder quality for optimized images
        image_max_age_seconds: Cache-Control max-age of optimized images
        image_allowed_hosts: Hosts remote source images may be fetched from
        log_level: Logging level name
    """

    build_id: str = 'local'
    cache_bucket: Optional[str] = None
    cache_key_prefix: Optional[str] = None
    region: str = DEFAULT_REGION
    s3_endpoint: Optional[str] = DEFAULT_S3_ENDPOINT
    docapi_endpoint: Optional[str] = None
    entries_table: Optional[str] = None
    tags_table: Optional[str] = None
    paths_table: Optional[str] = None
    locks_table: Optional[str] = None
    batch_write_limit: int = DEFAULT_BATCH_WRITE_LIMIT
    lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS
    retention_seconds: int = DEFAULT_RETENTION_SECONDS
    middleware_timeout_seconds: float = DEFAULT_MIDDLEWARE_TIMEOUT_SECONDS
    node_binary: str = 'node'
    project_root: str = '.'
    next_server_url: str = 'http://127.0.0.1:3000'
    revalidation_secret: Optional[str] = None
    revalidation_allowed_ips: Tuple[str, ...] = ()
    image_cache_bucket: Optional[str] = None
    image_sources_bucket: Optional[str] = None
    image_quality: int = DEFAULT_IMAGE_QUALITY
    image_max_age_seconds: int = DEFAULT_IMAGE_MAX_AGE_SECONDS
    image_allowed_hosts: Tuple[str, ...] = ()
    log_level: str = 'INFO'

    @property
    def isr_enabled(self) -> bool:
        """ISR needs a bucket; without one every request renders fresh."""
        return bool(self.cache_bucket)

    @classmethod
    def from_env(cls) -> 'RuntimeSettings':
        """
        Build settings from environment variables.

        Returns:
            RuntimeSettings instance

        Raises:
            ConfigurationError: If a numeric variable is malformed
        """
        allowed_ips = _env_list('REVALIDATION_ALLOWED_IPS')

        return cls(
            build_id=os.getenv('BUILD_ID', 'local'),
            cache_bucket=os.getenv('CACHE_BUCKET') or None,
            cache_key_prefix=os.getenv('CACHE_KEY_PREFIX') or None,
            region=os.getenv('REGION', DEFAULT_REGION),
            s3_endpoint=os.getenv('S3_ENDPOINT', DEFAULT_S3_ENDPOINT) or None,
            docapi_endpoint=os.getenv('YDB_DOCAPI_ENDPOINT') or None,
            entries_table=_env_table('ISR_ENTRIES_TABLE'),
            tags_table=_env_table('ISR_TAGS_TABLE'),
            paths_table=_env_table('ISR_PATHS_TABLE'),
            locks_table=_env_table('ISR_LOCKS_TABLE'),
            batch_write_limit=_env_int('ISR_BATCH_WRITE_LIMIT', DEFAULT_BATCH_WRITE_LIMIT),
            lock_ttl_seconds=_env_int('ISR_LOCK_TTL_SECONDS', DEFAULT_LOCK_TTL_SECONDS),
            retention_seconds=_env_int('ISR_RETENTION_SECONDS', DEFAULT_RETENTION_SECONDS),
            middleware_timeout_seconds=_env_float(
                'MIDDLEWARE_TIMEOUT_SECONDS', DEFAULT_MIDDLEWARE_TIMEOUT_SECONDS
            ),
            node_binary=os.getenv('NODE_BINARY', 'node'),
            project_root=os.getenv('PROJECT_ROOT', os.getcwd()),
            next_server_url=os.getenv('NEXT_SERVER_URL', 'http://127.0.0.1:3000'),
            revalidation_secret=os.getenv('REVALIDATION_SECRET') or None,
            revalidation_allowed_ips=allowed_ips,
            image_cache_bucket=os.getenv('IMAGE_CACHE_BUCKET') or None,
            image_sources_bucket=os.getenv('IMAGE_SOURCES_BUCKET') or None,
            image_quality=_env_int('IMAGE_QUALITY', DEFAULT_IMAGE_QUALITY),
            image_max_age_seconds=_env_int('IMAGE_MAX_AGE_SECONDS', DEFAULT_IMAGE_MAX_AGE_SECONDS),
            image_allowed_hosts=_env_list('IMAGE_ALLOWED_HOSTS'),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
        )

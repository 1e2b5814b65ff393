"""
ISR cache engine.

Coordinates cached response bodies in Object Storage with metadata and
tag/path index rows in the Document API, and implements stale-while-
revalidate reads and tag/path fan-out invalidation.
"""

import asyncio
import functools
import time
from typing import Callable, Dict, Iterable, Optional, Union

from botocore.exceptions import BotoCoreError

from ..data_access.cache_metadata_repository import CacheMetadataRepository
from ..data_access.exceptions import ObjectNotFoundError, StorageError
from ..data_access.object_storage_client import ObjectStorageClient
from ..exceptions import CacheWriteError
from ..models.cache_entry import (
    CacheEntry,
    blob_key,
    metadata_key,
    path_from_key,
    split_metadata_key,
)
from ..utils.metrics_emitter import MetricsEmitter
from ..utils.structured_logger import get_structured_logger
from .regeneration_scheduler import RegenerationScheduler

DEFAULT_RETENTION_SECONDS = 365 * 24 * 60 * 60

# Failures a write path turns into CacheWriteError.
WRITE_FAILURES = (StorageError, BotoCoreError)


class ISRCache:
    """
    Incremental Static Regeneration cache.

    Reads never raise: any storage failure on ``get`` is logged and treated
    as a miss. Writes (``set``, ``delete``, ``revalidate_path``,
    ``revalidate_tag``) raise CacheWriteError so the caller can decide how
    to degrade.

    A ``set`` writes the body, then the metadata row, then the tag and path
    index rows. A concurrent reader can therefore see a body without
    metadata (unreachable) but never metadata from a completed ``set``
    without its body.
    """

    def __init__(
        self,
        blob_store: ObjectStorageClient,
        metadata: CacheMetadataRepository,
        build_id: str,
        key_prefix: str = 'cache',
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        scheduler: Optional[RegenerationScheduler] = None,
        metrics: Optional[MetricsEmitter] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize cache engine.

        Args:
            blob_store: Object Storage client for bodies
            metadata: Repository for metadata and index rows
            build_id: Deployment build id entries are namespaced by
            key_prefix: First segment of body object keys
            retention_seconds: Outer retention TTL written on every row
            scheduler: Background regeneration scheduler for stale reads
            metrics: Optional metrics emitter
            clock: Returns current epoch seconds
        """
        self.blob_store = blob_store
        self.metadata = metadata
        self.build_id = build_id
        self.key_prefix = key_prefix
        self.retention_seconds = retention_seconds
        self.scheduler = scheduler
        self.metrics = metrics
        self.clock = clock
        self.logger = get_structured_logger('ISRCache', build_id=build_id)

    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""
        return int(self.clock() * 1000)

    def entry_key(self, key: str) -> str:
        return metadata_key(self.build_id, key)

    def blob_key(self, key: str, build_id: Optional[str] = None) -> str:
        return blob_key(self.key_prefix, build_id or self.build_id, key)

    async def _call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def get(self, key: str) -> Optional[CacheEntry]:
        """
        Read a cached entry.

        Stale entries are returned (stale-while-revalidate) after a
        regeneration request is handed to the scheduler.

        Args:
            key: Logical cache key

        Returns:
            CacheEntry, or None on miss or storage failure
        """
        log = self.logger.bind(cache_key=key)
        try:
            item = await self._call(self.metadata.get_metadata, self.entry_key(key))
        except Exception as e:
            log.error('Cache metadata read failed, treating as miss', operation='get', error=e)
            self._lookup('error')
            return None

        if item is None:
            log.log_cache_event('miss')
            self._lookup('miss')
            return None

        try:
            entry = CacheEntry.from_metadata_item(item)
        except (KeyError, TypeError, ValueError) as e:
            log.error('Unreadable cache metadata row, treating as miss', operation='get', error=e)
            self._lookup('error')
            return None

        stale = entry.is_stale(self.now_ms())
        if stale:
            self._signal_regeneration(key)

        try:
            entry.value = await self._call(
                self.blob_store.get_object, item.get('blobKey') or self.blob_key(key)
            )
        except ObjectNotFoundError:
            log.warning('Metadata present without body, treating as miss', operation='get')
            if self.metrics is not None:
                self.metrics.emit_partial_write('metadata_without_blob')
            self._lookup('miss')
            return None
        except Exception as e:
            log.error('Cache body read failed, treating as miss', operation='get', error=e)
            self._lookup('error')
            return None

        result = 'stale' if stale else 'hit'
        log.log_cache_event(result, status=entry.status)
        self._lookup(result)
        return entry

    async def set(
        self,
        key: str,
        value: Union[bytes, str],
        headers: Optional[Dict[str, str]] = None,
        status: int = 200,
        tags: Optional[Iterable[str]] = None,
        revalidate_after: Optional[int] = None,
        path: Optional[str] = None
    ) -> CacheEntry:
        """
        Store an entry, replacing any previous one under the same key.

        Args:
            key: Logical cache key
            value: Response body
            headers: Response headers to replay
            status: Response status to replay
            tags: Invalidation tags
            revalidate_after: Epoch milliseconds after which the entry is stale
            path: Path to index the entry under (defaults to the key's path)

        Returns:
            The stored entry

        Raises:
            CacheWriteError: If any write fails; earlier writes are not rolled back
        """
        if isinstance(value, str):
            value = value.encode('utf-8')
        now = self.clock()
        entry = CacheEntry(
            key=key,
            value=bytes(value),
            headers=dict(headers or {}),
            status=status,
            tags=list(dict.fromkeys(tags or [])),
            revalidate_after=revalidate_after,
            build_id=self.build_id,
            path=path or path_from_key(key),
            last_modified=int(now * 1000),
        )
        entry_key = self.entry_key(key)
        body_key = self.blob_key(key)
        expires_at = int(now) + self.retention_seconds
        content_type = next(
            (v for k, v in entry.headers.items() if k.lower() == 'content-type'),
            'application/octet-stream'
        )

        try:
            await self._call(self.blob_store.put_object, body_key, entry.value, content_type)
            await self._call(self.metadata.put_metadata, entry.to_metadata_item(body_key, expires_at))
            if entry.tags:
                await self._call(self.metadata.put_tag_rows, entry_key, entry.tags, expires_at)
            await self._call(self.metadata.put_path_row, entry_key, entry.path, expires_at)
        except WRITE_FAILURES as e:
            self.logger.error('Cache write failed', operation='set', error=e, cache_key=key)
            self._write_failure('set')
            raise CacheWriteError(f"Failed to write cache entry {key}: {e}", cache_key=key) from e

        self.logger.debug(
            'Stored cache entry',
            operation='set',
            cache_key=key,
            size=len(entry.value),
            tags=entry.tags
        )
        return entry

    async def delete(self, key: str) -> None:
        """
        Remove an entry. Deleting a missing entry is a no-op.

        Index rows pointing at the entry are left in place; lookups through
        them resolve to misses.

        Raises:
            CacheWriteError: If a delete fails
        """
        try:
            await self._delete_entry(self.build_id, key)
        except WRITE_FAILURES as e:
            self.logger.error('Cache delete failed', operation='delete', error=e, cache_key=key)
            self._write_failure('delete')
            raise CacheWriteError(f"Failed to delete cache entry {key}: {e}", cache_key=key) from e

    async def revalidate_path(self, path: str) -> int:
        """
        Remove every entry indexed under ``path``.

        Returns:
            Number of entries removed

        Raises:
            CacheWriteError: If the index query or a delete fails
        """
        try:
            entry_keys = await self._call(self.metadata.keys_for_path, path)
            await self._delete_indexed(entry_keys)
            await self._call(self.metadata.delete_path_rows, path, entry_keys)
        except WRITE_FAILURES as e:
            self.logger.error('Path revalidation failed', operation='revalidate_path', error=e, path=path)
            self._write_failure('revalidate_path')
            raise CacheWriteError(f"Failed to revalidate path {path}: {e}") from e

        self.logger.info('Revalidated path', operation='revalidate_path', path=path, entries=len(entry_keys))
        return len(entry_keys)

    async def revalidate_tag(self, tag: str) -> int:
        """
        Remove every entry carrying ``tag``.

        Returns:
            Number of entries removed

        Raises:
            CacheWriteError: If the index query or a delete fails
        """
        try:
            entry_keys = await self._call(self.metadata.keys_for_tag, tag)
            await self._delete_indexed(entry_keys)
            await self._call(self.metadata.delete_tag_rows, tag, entry_keys)
        except WRITE_FAILURES as e:
            self.logger.error('Tag revalidation failed', operation='revalidate_tag', error=e, tag=tag)
            self._write_failure('revalidate_tag')
            raise CacheWriteError(f"Failed to revalidate tag {tag}: {e}") from e

        self.logger.info('Revalidated tag', operation='revalidate_tag', tag=tag, entries=len(entry_keys))
        return len(entry_keys)

    async def _delete_indexed(self, entry_keys) -> None:
        # Sequential: each delete is an independent unit of work.
        for entry_key in entry_keys:
            build_id, key = split_metadata_key(entry_key)
            await self._delete_entry(build_id, key)

    async def _delete_entry(self, build_id: str, key: str) -> None:
        await self._call(self.blob_store.delete_object, self.blob_key(key, build_id))
        await self._call(self.metadata.delete_metadata, metadata_key(build_id, key))

    def _signal_regeneration(self, key: str) -> None:
        if self.scheduler is None:
            self.logger.info('Entry is stale, no scheduler configured', operation='get', cache_key=key)
            return
        self.scheduler.request(key)

    def _lookup(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.emit_cache_lookup(result)

    def _write_failure(self, operation: str) -> None:
        if self.metrics is not None:
            self.metrics.emit_cache_write_failure(operation)

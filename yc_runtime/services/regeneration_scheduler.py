"""
Single-flight background regeneration of stale cache entries.

A stale read asks the scheduler to regenerate the entry. Within one process
the request is deduplicated by an in-flight map; across function instances a
short-lived lock row in the locks table decides which instance regenerates.
"""

import asyncio
import functools
import uuid
from typing import Awaitable, Callable, Dict, FrozenSet, Optional

from botocore.exceptions import BotoCoreError

from ..data_access.exceptions import StorageError
from ..data_access.regeneration_locks_repository import RegenerationLocksRepository
from ..models.cache_entry import metadata_key
from ..utils.metrics_emitter import MetricsEmitter
from ..utils.structured_logger import get_structured_logger

Regenerator = Callable[[str], Awaitable[None]]

LOCK_FAILURES = (StorageError, BotoCoreError)


class RegenerationScheduler:
    """
    Dispatches at most one regeneration per cache key at a time.

    Example:
        >>> scheduler = RegenerationScheduler(locks_repository=locks, build_id='b1')
        >>> scheduler.set_regenerator(pipeline.regenerate)
        >>> scheduler.request('/blog/hello')  # inside a running event loop
        True
    """

    def __init__(
        self,
        regenerate: Optional[Regenerator] = None,
        locks_repository: Optional[RegenerationLocksRepository] = None,
        build_id: str = '',
        lock_ttl_seconds: int = 30,
        metrics: Optional[MetricsEmitter] = None
    ):
        """
        Initialize scheduler.

        Args:
            regenerate: Coroutine function re-rendering a key and storing it
            locks_repository: Distributed lock table; None disables cross-instance claims
            build_id: Build the lock keys are namespaced by
            lock_ttl_seconds: Lifetime of a claimed lock row
            metrics: Optional metrics emitter
        """
        self._regenerate = regenerate
        self.locks = locks_repository
        self.build_id = build_id
        self.lock_ttl_seconds = lock_ttl_seconds
        self.metrics = metrics
        self.logger = get_structured_logger('RegenerationScheduler', build_id=build_id)
        self._in_flight: Dict[str, asyncio.Task] = {}

    def set_regenerator(self, regenerate: Regenerator) -> None:
        """Attach the regeneration callback after construction."""
        self._regenerate = regenerate

    @property
    def in_flight(self) -> FrozenSet[str]:
        """Keys with a regeneration currently running in this process."""
        return frozenset(self._in_flight)

    def request(self, key: str) -> bool:
        """
        Ask for a background regeneration of ``key``.

        Must be called from a running event loop. The check and the
        registration happen without suspending, so concurrent readers of the
        same stale entry cannot both schedule.

        Returns:
            True if a regeneration task was started, False if one is
            already running or no regenerator is configured
        """
        if key in self._in_flight:
            self._emit('deduplicated')
            self.logger.debug('Regeneration already in flight', operation='request', cache_key=key)
            return False
        if self._regenerate is None:
            self.logger.warning('Stale entry but no regenerator configured', operation='request', cache_key=key)
            return False

        task = asyncio.get_running_loop().create_task(self._run(key))
        self._in_flight[key] = task
        task.add_done_callback(functools.partial(self._forget, key))
        self._emit('scheduled')
        self.logger.info('Scheduled regeneration', operation='request', cache_key=key)
        return True

    async def drain(self) -> None:
        """Wait for every in-flight regeneration to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _run(self, key: str) -> None:
        lock_key = metadata_key(self.build_id, key)
        owner = str(uuid.uuid4())
        loop = asyncio.get_running_loop()

        if self.locks is not None:
            try:
                acquired = await loop.run_in_executor(
                    None,
                    functools.partial(self.locks.try_acquire, lock_key, owner, self.lock_ttl_seconds)
                )
            except LOCK_FAILURES as e:
                self.logger.error('Failed to claim regeneration lock', operation='claim', error=e, cache_key=key)
                self._emit('failed')
                return
            if not acquired:
                self._emit('lock_held')
                return

        try:
            await self._regenerate(key)
            self._emit('completed')
            self.logger.info('Regenerated entry', operation='regenerate', cache_key=key)
        except Exception as e:
            # Regeneration runs after the stale response is served.
            self.logger.error('Regeneration failed', operation='regenerate', error=e, cache_key=key)
            self._emit('failed')
        finally:
            if self.locks is not None:
                try:
                    await loop.run_in_executor(
                        None, functools.partial(self.locks.release, lock_key, owner)
                    )
                except LOCK_FAILURES as e:
                    self.logger.warning(
                        'Failed to release regeneration lock',
                        operation='release',
                        cache_key=key,
                        error_message=str(e)
                    )

    def _emit(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.emit_regeneration(outcome)

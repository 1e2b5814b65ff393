"""
Unit tests for the regeneration scheduler.
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from botocore.exceptions import EndpointConnectionError

from yc_runtime.data_access.exceptions import DocumentStoreError
from yc_runtime.data_access.regeneration_locks_repository import RegenerationLocksRepository
from yc_runtime.services.regeneration_scheduler import RegenerationScheduler
from yc_runtime.utils.metrics_emitter import MetricsEmitter


@pytest.fixture
def mock_locks():
    locks = Mock(spec=RegenerationLocksRepository)
    locks.try_acquire.return_value = True
    locks.release.return_value = True
    return locks


@pytest.fixture
def metrics():
    emitter = MetricsEmitter()
    emitter.logger.logger = Mock()
    return emitter


def outcomes(metrics):
    return [m['Dimensions']['Outcome'] for m in metrics.pending if m['MetricName'] == 'Regenerations']


class TestRegenerationScheduler:
    """Test suite for RegenerationScheduler."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_regenerate_once(self, mock_locks, metrics):
        # Arrange
        release = asyncio.Event()
        calls = []

        async def regenerate(key):
            calls.append(key)
            await release.wait()

        scheduler = RegenerationScheduler(
            regenerate=regenerate, locks_repository=mock_locks, build_id='b1', metrics=metrics
        )

        # Act
        started = [scheduler.request('/blog') for _ in range(5)]
        await asyncio.sleep(0)
        in_flight = scheduler.in_flight
        release.set()
        await scheduler.drain()

        # Assert
        assert started == [True, False, False, False, False]
        assert in_flight == frozenset(['/blog'])
        assert calls == ['/blog']
        assert scheduler.in_flight == frozenset()
        assert outcomes(metrics).count('deduplicated') == 4
        assert 'completed' in outcomes(metrics)

    @pytest.mark.asyncio
    async def test_lock_uses_build_namespaced_key_and_is_released(self, mock_locks):
        regenerate = AsyncMock()
        scheduler = RegenerationScheduler(
            regenerate=regenerate, locks_repository=mock_locks, build_id='b1', lock_ttl_seconds=15
        )

        scheduler.request('/blog')
        await scheduler.drain()

        lock_key, owner, ttl = mock_locks.try_acquire.call_args.args
        assert lock_key == 'b1#/blog'
        assert ttl == 15
        mock_locks.release.assert_called_once_with('b1#/blog', owner)
        regenerate.assert_awaited_once_with('/blog')

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere_skips_regeneration(self, mock_locks, metrics):
        mock_locks.try_acquire.return_value = False
        regenerate = AsyncMock()
        scheduler = RegenerationScheduler(regenerate=regenerate, locks_repository=mock_locks, metrics=metrics)

        scheduler.request('/blog')
        await scheduler.drain()

        regenerate.assert_not_awaited()
        mock_locks.release.assert_not_called()
        assert outcomes(metrics) == ['scheduled', 'lock_held']

    @pytest.mark.asyncio
    async def test_lock_store_failure_skips_regeneration(self, mock_locks, metrics):
        mock_locks.try_acquire.side_effect = DocumentStoreError('unavailable')
        regenerate = AsyncMock()
        scheduler = RegenerationScheduler(regenerate=regenerate, locks_repository=mock_locks, metrics=metrics)

        scheduler.request('/blog')
        await scheduler.drain()

        regenerate.assert_not_awaited()
        assert outcomes(metrics)[-1] == 'failed'

    @pytest.mark.asyncio
    async def test_unreachable_lock_table_skips_regeneration(self, mock_locks, metrics):
        mock_locks.try_acquire.side_effect = EndpointConnectionError(endpoint_url='https://docapi.example')
        regenerate = AsyncMock()
        scheduler = RegenerationScheduler(regenerate=regenerate, locks_repository=mock_locks, metrics=metrics)

        scheduler.request('/blog')
        await scheduler.drain()

        regenerate.assert_not_awaited()
        assert outcomes(metrics)[-1] == 'failed'

    @pytest.mark.asyncio
    async def test_failed_regeneration_releases_lock_and_allows_retry(self, mock_locks, metrics):
        regenerate = AsyncMock(side_effect=[RuntimeError('upstream down'), None])
        scheduler = RegenerationScheduler(regenerate=regenerate, locks_repository=mock_locks, metrics=metrics)

        scheduler.request('/blog')
        await scheduler.drain()
        retried = scheduler.request('/blog')
        await scheduler.drain()

        assert retried is True
        assert mock_locks.release.call_count == 2
        assert outcomes(metrics) == ['scheduled', 'failed', 'scheduled', 'completed']

    @pytest.mark.asyncio
    async def test_without_lock_repository_runs_locally(self):
        regenerate = AsyncMock()
        scheduler = RegenerationScheduler(regenerate=regenerate)

        scheduler.request('/a')
        scheduler.request('/b')
        await scheduler.drain()

        assert sorted(c.args[0] for c in regenerate.await_args_list) == ['/a', '/b']

    @pytest.mark.asyncio
    async def test_without_regenerator_nothing_is_scheduled(self):
        scheduler = RegenerationScheduler()

        assert scheduler.request('/blog') is False
        assert scheduler.in_flight == frozenset()

    def test_request_outside_event_loop_raises(self):
        scheduler = RegenerationScheduler(regenerate=AsyncMock())

        with pytest.raises(RuntimeError):
            scheduler.request('/blog')

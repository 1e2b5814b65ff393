"""
Unit tests for structured logging and log-based metrics.
"""
import json
import logging
from decimal import Decimal
from unittest.mock import Mock

from yc_runtime.utils.metrics_emitter import MetricsContext, MetricsEmitter
from yc_runtime.utils.structured_logger import (
    LoggingContext,
    StructuredLogger,
    get_structured_logger,
)


def captured(logger, method='info'):
    """Parse the JSON lines passed to the underlying logging.Logger."""
    return [json.loads(c.args[0]) for c in getattr(logger.logger, method).call_args_list]


class TestStructuredLogger:
    """Test suite for StructuredLogger."""

    def test_log_line_carries_correlation_fields(self):
        # Arrange
        logger = get_structured_logger('ISRCache', correlation_id='req-1', build_id='b1')
        logger.logger = Mock()

        # Act
        logger.info('Stored cache entry', operation='set', size=Decimal('12'))

        # Assert
        record = captured(logger)[0]
        assert record['component'] == 'ISRCache'
        assert record['requestId'] == 'req-1'
        assert record['buildId'] == 'b1'
        assert record['operation'] == 'set'
        assert record['context'] == {'size': 12.0}
        assert record['timestamp'].endswith('Z')

    def test_bind_adds_cache_key_and_keeps_other_ids(self):
        logger = StructuredLogger('ISRCache', request_id='req-1')

        bound = logger.bind(cache_key='/blog')

        assert bound.cache_key == '/blog'
        assert bound.request_id == 'req-1'
        assert logger.cache_key is None

    def test_error_records_exception_details(self):
        logger = get_structured_logger('RenderPipeline')
        logger.logger = Mock()

        logger.error('Upstream request failed', operation='handle', error=ValueError('boom'))

        record = captured(logger, 'error')[0]
        assert record['level'] == 'ERROR'
        assert record['context'] == {'error_type': 'ValueError', 'error_message': 'boom'}

    def test_bytes_are_summarized(self):
        logger = get_structured_logger('NodeSandbox')
        logger.logger = Mock()

        logger.info('payload', body=b'abc')

        assert captured(logger)[0]['context']['body'] == '<3 bytes>'

    def test_debug_suppressed_below_level(self):
        logger = get_structured_logger('ISRCache')
        logger.logger = Mock()
        logger.logger.isEnabledFor.return_value = False

        logger.log_cache_event('hit')

        logger.logger.debug.assert_not_called()

    def test_logging_context_logs_failure(self):
        logger = get_structured_logger('Bootstrap')
        logger.logger = Mock()
        logger.logger.isEnabledFor.side_effect = lambda level: level >= logging.INFO

        try:
            with LoggingContext(logger, 'load_manifest'):
                raise RuntimeError('bad manifest')
        except RuntimeError:
            pass

        record = captured(logger, 'error')[0]
        assert record['message'] == 'Operation failed: load_manifest'
        assert 'duration_ms' in record['context']


class TestMetricsEmitter:
    """Test suite for MetricsEmitter."""

    def test_metrics_are_buffered_until_flush(self):
        # Arrange
        emitter = MetricsEmitter()
        emitter.logger.logger = Mock()

        # Act
        emitter.emit_cache_lookup('hit')
        emitter.emit_regeneration('scheduled')

        # Assert
        assert [m['MetricName'] for m in emitter.pending] == ['CacheLookups', 'Regenerations']
        emitter.logger.logger.info.assert_not_called()

    def test_flush_writes_one_record_and_clears(self):
        emitter = MetricsEmitter(namespace='Test')
        emitter.logger.logger = Mock()
        emitter.emit_middleware_outcome('rewrite', 12.5)

        emitter.flush()
        emitter.flush()

        records = captured(emitter.logger)
        assert len(records) == 1
        assert records[0]['operation'] == 'metrics'
        assert records[0]['context']['namespace'] == 'Test'
        metrics = records[0]['context']['metrics']
        assert [m['MetricName'] for m in metrics] == ['MiddlewareOutcomes', 'MiddlewareLatency']
        assert metrics[1]['Dimensions'] == {'Outcome': 'rewrite'}
        assert emitter.pending == []

    def test_full_buffer_flushes_automatically(self):
        emitter = MetricsEmitter(buffer_size=2)
        emitter.logger.logger = Mock()

        emitter.emit_partial_write('metadata_without_blob')
        emitter.emit_cache_write_failure('set')

        assert emitter.logger.logger.info.call_count == 1
        assert emitter.pending == []

    def test_metrics_context_emits_latency(self):
        emitter = MetricsEmitter()

        with MetricsContext(emitter, 'revalidate_tag'):
            pass

        metric = emitter.pending[0]
        assert metric['MetricName'] == 'OperationLatency'
        assert metric['Dimensions'] == {'Operation': 'revalidate_tag'}

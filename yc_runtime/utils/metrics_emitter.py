"""
Log-based metrics emitter for the runtime.

Yandex Cloud Functions have no metrics client comparable to CloudWatch, so
metrics are buffered per invocation and written as structured log records
(operation ``metrics``). Cloud Logging queries aggregate them.
"""

import time
from typing import Dict, List, Optional

from .structured_logger import get_structured_logger


class MetricsEmitter:
    """
    Emits runtime metrics for cache, regeneration and middleware operations.

    Provides methods for tracking cache lookups, partial-write
    inconsistencies, regeneration scheduling and middleware outcomes.
    """

    def __init__(self, namespace: str = 'YcOpenNext/Runtime', buffer_size: int = 50):
        """
        Initialize metrics emitter.

        Args:
            namespace: Metric namespace written with every record
            buffer_size: Buffered metrics that trigger an automatic flush
        """
        self.namespace = namespace
        self.logger = get_structured_logger('Metrics')
        self._metric_buffer: List[Dict] = []
        self._buffer_size = buffer_size

    def emit_cache_lookup(self, result: str) -> None:
        """
        Emit metric for a cache lookup.

        Args:
            result: hit, stale, miss or error
        """
        self._add_metric(
            metric_name='CacheLookups',
            value=1,
            unit='Count',
            dimensions={'Result': result}
        )

    def emit_partial_write(self, kind: str) -> None:
        """
        Emit metric for a tolerated partial-write inconsistency.

        Args:
            kind: Inconsistency type (e.g., metadata_without_blob)
        """
        self._add_metric(
            metric_name='PartialWriteInconsistencies',
            value=1,
            unit='Count',
            dimensions={'Kind': kind}
        )

    def emit_cache_write_failure(self, operation: str) -> None:
        """
        Emit metric for a failed cache write.

        Args:
            operation: Engine operation that failed (set, delete, revalidate)
        """
        self._add_metric(
            metric_name='CacheWriteFailures',
            value=1,
            unit='Count',
            dimensions={'Operation': operation}
        )

    def emit_regeneration(self, outcome: str) -> None:
        """
        Emit metric for a regeneration signal.

        Args:
            outcome: scheduled, deduplicated, lock_held, completed or failed
        """
        self._add_metric(
            metric_name='Regenerations',
            value=1,
            unit='Count',
            dimensions={'Outcome': outcome}
        )

    def emit_middleware_outcome(self, outcome: str, duration_ms: float) -> None:
        """
        Emit metrics for a middleware evaluation.

        Args:
            outcome: Terminal state name (none, continue, rewrite, ...)
            duration_ms: Evaluation latency in milliseconds
        """
        self._add_metric(
            metric_name='MiddlewareOutcomes',
            value=1,
            unit='Count',
            dimensions={'Outcome': outcome}
        )
        self._add_metric(
            metric_name='MiddlewareLatency',
            value=duration_ms,
            unit='Milliseconds',
            dimensions={'Outcome': outcome}
        )

    def emit_middleware_fallback(self, error_name: str) -> None:
        """
        Emit metric for a native fallback after an emulation capability gap.

        Args:
            error_name: Name of the error that triggered the fallback
        """
        self._add_metric(
            metric_name='MiddlewareFallbacks',
            value=1,
            unit='Count',
            dimensions={'ErrorName': error_name}
        )

    def emit_image_request(self, result: str) -> None:
        """
        Emit metric for an image optimization request.

        Args:
            result: hit, miss, passthrough or error
        """
        self._add_metric(
            metric_name='ImageRequests',
            value=1,
            unit='Count',
            dimensions={'Result': result}
        )

    def emit_latency(self, operation: str, latency_ms: float) -> None:
        """
        Emit latency metric for an arbitrary operation.

        Args:
            operation: Operation name
            latency_ms: Latency in milliseconds
        """
        self._add_metric(
            metric_name='OperationLatency',
            value=latency_ms,
            unit='Milliseconds',
            dimensions={'Operation': operation}
        )

    @property
    def pending(self) -> List[Dict]:
        """Metrics buffered since the last flush."""
        return list(self._metric_buffer)

    def _add_metric(
        self,
        metric_name: str,
        value: float,
        unit: str,
        dimensions: Optional[Dict[str, str]] = None
    ) -> None:
        self._metric_buffer.append({
            'MetricName': metric_name,
            'Value': value,
            'Unit': unit,
            'Dimensions': dimensions or {},
            'Timestamp': time.time()
        })

        if len(self._metric_buffer) >= self._buffer_size:
            self.flush()

    def flush(self) -> None:
        """Write buffered metrics as a single structured log record."""
        if not self._metric_buffer:
            return

        metrics, self._metric_buffer = self._metric_buffer, []
        self.logger.info(
            'Metrics',
            operation='metrics',
            namespace=self.namespace,
            metrics=metrics
        )


class MetricsContext:
    """
    Context manager for tracking operation latency.

    Automatically emits latency metric when context exits.
    """

    def __init__(self, emitter: MetricsEmitter, operation: str):
        self.emitter = emitter
        self.operation = operation
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            latency_ms = (time.time() - self.start_time) * 1000
            self.emitter.emit_latency(self.operation, latency_ms)

"""
JSON log lines for Yandex Cloud Logging.

Every record is a single JSON object so Cloud Logging can filter on
``requestId``, ``buildId`` and ``cacheKey`` without parsing free text.
Keyword arguments passed to a log call end up under ``context``.
"""

import json
import logging
import os
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

# Loggers of the SDK stack that flood the output at INFO.
NOISY_LOGGERS = ('boto3', 'botocore', 'urllib3', 's3transfer')


def _level_from_env() -> int:
    return getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)


class DecimalEncoder(json.JSONEncoder):
    """Serializes Document API numbers and summarizes raw bodies."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, bytes):
            return f'<{len(obj)} bytes>'
        return super().default(obj)


class StructuredLogger:
    """
    Logger bound to a component and, optionally, to the request, build and
    cache key being worked on.

    Use ``bind`` to derive a logger for a narrower scope instead of
    repeating correlation ids on every call.
    """

    def __init__(
        self,
        component: str,
        request_id: Optional[str] = None,
        build_id: Optional[str] = None,
        cache_key: Optional[str] = None
    ):
        self.component = component
        self.request_id = request_id
        self.build_id = build_id
        self.cache_key = cache_key
        self.logger = logging.getLogger(component)
        self.logger.setLevel(_level_from_env())

    def bind(self, **correlation: Optional[str]) -> 'StructuredLogger':
        """
        Derive a logger carrying extra correlation ids.

        Example:
            >>> log = get_structured_logger('ISRCache').bind(cache_key='/blog')
        """
        return StructuredLogger(
            component=self.component,
            request_id=correlation.get('request_id', self.request_id),
            build_id=correlation.get('build_id', self.build_id),
            cache_key=correlation.get('cache_key', self.cache_key),
        )

    def _render(self, level: str, message: str, operation: Optional[str], context: dict) -> str:
        record = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': level,
            'component': self.component,
            'message': message,
        }
        for field, value in (
            ('requestId', self.request_id),
            ('buildId', self.build_id),
            ('cacheKey', self.cache_key),
            ('operation', operation),
        ):
            if value:
                record[field] = value
        if context:
            record['context'] = context
        return json.dumps(record, cls=DecimalEncoder)

    def debug(self, message: str, operation: Optional[str] = None, **context) -> None:
        # Skip serialization when DEBUG is off; cache events log at this level.
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self._render('DEBUG', message, operation, context))

    def info(self, message: str, operation: Optional[str] = None, **context) -> None:
        self.logger.info(self._render('INFO', message, operation, context))

    def warning(self, message: str, operation: Optional[str] = None, **context) -> None:
        self.logger.warning(self._render('WARNING', message, operation, context))

    def error(
        self,
        message: str,
        operation: Optional[str] = None,
        error: Optional[BaseException] = None,
        **context
    ) -> None:
        """
        Log at ERROR level.

        When ``error`` is given its class name and text are added to the
        context as ``error_type`` and ``error_message``.
        """
        if error:
            context['error_type'] = type(error).__name__
            context['error_message'] = str(error)
        self.logger.error(self._render('ERROR', message, operation, context))

    def log_cache_event(self, event_type: str, **context) -> None:
        """Record a cache lookup outcome (hit, stale, miss or error) at DEBUG."""
        self.debug(f'Cache {event_type}', operation='cache_event', event_type=event_type, **context)


class LoggingContext:
    """
    Times a block of work and logs its outcome.

    Completion is logged at DEBUG; an exception escaping the block is logged
    at ERROR with the elapsed time and then re-raised.
    """

    def __init__(self, logger: StructuredLogger, operation: str, **context):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.started: Optional[float] = None

    def __enter__(self):
        self.started = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.started is None:
            return
        duration_ms = round((time.monotonic() - self.started) * 1000, 2)
        if exc_type is not None:
            self.logger.error(
                f'Operation failed: {self.operation}',
                operation=self.operation,
                error=exc_val,
                duration_ms=duration_ms,
                **self.context
            )
        else:
            self.logger.debug(
                f'Operation finished: {self.operation}',
                operation=self.operation,
                duration_ms=duration_ms,
                **self.context
            )


def get_structured_logger(
    component: str,
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
    build_id: Optional[str] = None,
    cache_key: Optional[str] = None
) -> StructuredLogger:
    """
    Create a StructuredLogger for a component.

    ``correlation_id`` is accepted as an alias for ``request_id``.

    Example:
        >>> logger = get_structured_logger('MiddlewareRunner', request_id='req-1')
        >>> logger.info('Middleware matched')
    """
    return StructuredLogger(
        component=component,
        request_id=request_id or correlation_id,
        build_id=build_id,
        cache_key=cache_key
    )


def configure_lambda_logging():
    """
    Route records to stdout as bare messages, which is what Cloud Functions
    forwards to Cloud Logging. Called once at handler import time.
    """
    level = _level_from_env()
    logging.basicConfig(level=level, format='%(message)s', force=True)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

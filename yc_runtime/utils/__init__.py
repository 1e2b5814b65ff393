"""Utility modules for logging, metrics and gateway responses."""
from .structured_logger import (
    StructuredLogger,
    LoggingContext,
    get_structured_logger,
    configure_lambda_logging,
)
from .metrics_emitter import MetricsEmitter, MetricsContext
from .response_builder import (
    success_response,
    error_response,
    body_response,
    redirect_response,
    should_base64_encode,
)

__all__ = [
    'StructuredLogger',
    'LoggingContext',
    'get_structured_logger',
    'configure_lambda_logging',
    'MetricsEmitter',
    'MetricsContext',
    'success_response',
    'error_response',
    'body_response',
    'redirect_response',
    'should_base64_encode',
]

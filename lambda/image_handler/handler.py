"""
Image function handler.

Serves ``/_next/image`` requests: resizes and re-encodes source images in
the best format the client accepts, caching each variant in Object Storage.
"""
import logging
import os

from yc_runtime.bootstrap import build_image_optimizer
from yc_runtime.config.settings import RuntimeSettings
from yc_runtime.utils.metrics_emitter import MetricsEmitter
from yc_runtime.utils.response_builder import error_response
from yc_runtime.utils.structured_logger import configure_lambda_logging, get_structured_logger

configure_lambda_logging()
base_logger = logging.getLogger()
base_logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_structured_logger('ImageHandler')

_optimizer = None
_metrics = None


def _initialize():
    global _optimizer, _metrics

    settings = RuntimeSettings.from_env()
    metrics = MetricsEmitter()
    _optimizer = build_image_optimizer(settings, metrics)
    _metrics = metrics
    logger.info(
        'Image function initialized',
        operation='initialize',
        cache_bucket=settings.image_cache_bucket,
        formats=list(_optimizer.formats)
    )


def lambda_handler(event, context):
    """
    Handle an image optimization request.

    Args:
        event: API Gateway event (payload format 2.0)
        context: Function context

    Returns:
        Optimized image, 4xx for bad requests, 502 for unreachable sources,
        500 on unexpected failures
    """
    method = ((event.get('requestContext') or {}).get('http') or {}).get('method', 'GET').upper()
    if method not in ('GET', 'HEAD'):
        return error_response(405, 'METHOD_NOT_ALLOWED', 'Use GET to request images')

    try:
        if _optimizer is None:
            _initialize()
        return _optimizer.handle(event)
    except Exception as e:
        logger.error('Unhandled error in image handler', operation='lambda_handler', error=e)
        return error_response(500, 'IMAGE_OPTIMIZATION_FAILED', 'Internal server error')
    finally:
        if _metrics is not None:
            _metrics.flush()

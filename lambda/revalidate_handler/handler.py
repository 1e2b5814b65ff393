"""
Revalidation function handler.

Serves the on-demand revalidation endpoint (``POST /api/__revalidate``):
invalidates ISR cache entries by path or by tag.
"""
import asyncio
import logging
import os

from yc_runtime.bootstrap import build_cache, build_revalidation_service, load_deploy_manifest
from yc_runtime.config.settings import RuntimeSettings
from yc_runtime.utils.metrics_emitter import MetricsEmitter
from yc_runtime.utils.response_builder import error_response
from yc_runtime.utils.structured_logger import configure_lambda_logging, get_structured_logger

configure_lambda_logging()
base_logger = logging.getLogger()
base_logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_structured_logger('RevalidateHandler')

_service = None
_metrics = None


def _initialize():
    global _service, _metrics

    settings = RuntimeSettings.from_env()
    manifest = load_deploy_manifest(settings)
    metrics = MetricsEmitter()
    cache, _ = build_cache(settings, manifest, metrics)
    if cache is None:
        raise RuntimeError('ISR cache is not configured (CACHE_BUCKET is unset)')
    _service = build_revalidation_service(settings, cache, manifest)
    _metrics = metrics


def lambda_handler(event, context):
    """
    Handle a revalidation request.

    Args:
        event: API Gateway event (payload format 2.0)
        context: Function context

    Returns:
        200 on success, 400/401/405 on client errors, 500 on failure
    """
    method = ((event.get('requestContext') or {}).get('http') or {}).get('method', 'POST').upper()
    if method != 'POST':
        return error_response(405, 'METHOD_NOT_ALLOWED', 'Use POST to revalidate')

    try:
        if _service is None:
            _initialize()
        return asyncio.run(_service.handle(event))
    except Exception as e:
        logger.error('Unhandled error in revalidate handler', operation='lambda_handler', error=e)
        return error_response(500, 'REVALIDATION_FAILED', 'Internal server error')
    finally:
        if _metrics is not None:
            _metrics.flush()

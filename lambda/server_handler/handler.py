"""
Server function handler.

Serves Next.js requests from API Gateway: runs middleware, answers from the
ISR cache when possible and proxies everything else to the Next.js server.
Background regenerations scheduled by stale reads are drained before the
handler returns, since the instance may be frozen afterwards.
"""
import asyncio
import logging
import os

from yc_runtime.bootstrap import build_cache, build_middleware_runner, load_deploy_manifest
from yc_runtime.config.settings import RuntimeSettings
from yc_runtime.services.render_pipeline import RenderPipeline
from yc_runtime.services.upstream_client import UpstreamClient
from yc_runtime.utils.metrics_emitter import MetricsEmitter
from yc_runtime.utils.response_builder import error_response
from yc_runtime.utils.structured_logger import configure_lambda_logging, get_structured_logger

configure_lambda_logging()
base_logger = logging.getLogger()
base_logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_structured_logger('ServerHandler')

# Built on first invocation and reused across invocations
_pipeline = None
_scheduler = None
_metrics = None


def _initialize():
    global _pipeline, _scheduler, _metrics

    settings = RuntimeSettings.from_env()
    manifest = load_deploy_manifest(settings)
    metrics = MetricsEmitter()
    cache, scheduler = build_cache(settings, manifest, metrics)
    pipeline = RenderPipeline(
        upstream=UpstreamClient(settings.next_server_url),
        cache=cache,
        middleware_runner=build_middleware_runner(settings, manifest, metrics),
        metrics=metrics,
    )
    if scheduler is not None:
        scheduler.set_regenerator(pipeline.regenerate)

    logger.info(
        'Server function initialized',
        operation='initialize',
        build_id=settings.build_id,
        isr_enabled=settings.isr_enabled,
        middleware_mode=pipeline.middleware_runner.mode
    )
    _pipeline, _scheduler, _metrics = pipeline, scheduler, metrics


async def _handle(event):
    try:
        return await _pipeline.handle(event)
    finally:
        if _scheduler is not None:
            await _scheduler.drain()
        _metrics.flush()


def lambda_handler(event, context):
    """
    Handle an API Gateway HTTP event.

    Args:
        event: API Gateway event (payload format 2.0)
        context: Function context

    Returns:
        API Gateway response
    """
    request_id = (event.get('requestContext') or {}).get('requestId')
    try:
        if _pipeline is None:
            _initialize()
        return asyncio.run(_handle(event))
    except Exception as e:
        logger.error(
            'Unhandled error in server handler',
            operation='lambda_handler',
            error=e,
            request_id=request_id
        )
        return error_response(500, 'INTERNAL_ERROR', 'Internal server error')

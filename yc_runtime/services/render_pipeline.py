"""
Request pipeline of the server function.

middleware -> ISR lookup -> upstream render -> ISR store. Cache failures
never fail the response: reads degrade to misses inside the cache engine
and write failures are logged here.
"""

import asyncio
import functools
import re
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import requests

from ..exceptions import CacheWriteError
from ..utils.metrics_emitter import MetricsEmitter
from ..utils.response_builder import body_response, error_response
from ..utils.structured_logger import get_structured_logger
from .edge_environment import build_edge_request
from .isr_cache import ISRCache
from .middleware_runner import MiddlewareResult, MiddlewareRunner
from .upstream_client import UpstreamClient, UpstreamResponse

CACHE_STATUS_HEADER = 'x-nextjs-cache'
CACHE_TAGS_HEADER = 'x-next-cache-tags'
CACHEABLE_METHODS = ('GET', 'HEAD')

_S_MAXAGE = re.compile(r's-maxage=(\d+)')
_UNCACHEABLE_DIRECTIVES = ('private', 'no-store', 'no-cache')


def cache_lifetime(headers: Dict[str, str]) -> Optional[int]:
    """
    Shared-cache lifetime in seconds from a Cache-Control header.

    Example:
        >>> cache_lifetime({'cache-control': 's-maxage=60, stale-while-revalidate'})
        60
        >>> cache_lifetime({'cache-control': 'private, no-cache'}) is None
        True
    """
    cache_control = headers.get('cache-control', '').lower()
    if any(directive in cache_control for directive in _UNCACHEABLE_DIRECTIVES):
        return None
    match = _S_MAXAGE.search(cache_control)
    return int(match.group(1)) if match else None


def cache_tags(headers: Dict[str, str]) -> list:
    raw = headers.get(CACHE_TAGS_HEADER, '')
    return [tag.strip() for tag in raw.split(',') if tag.strip()]


class RenderPipeline:
    """
    Serves one gateway event.

    Example:
        >>> pipeline = RenderPipeline(upstream, cache=cache, middleware_runner=runner)
        >>> response = await pipeline.handle(event)
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        cache: Optional[ISRCache] = None,
        middleware_runner: Optional[MiddlewareRunner] = None,
        metrics: Optional[MetricsEmitter] = None
    ):
        self.upstream = upstream
        self.cache = cache
        self.middleware_runner = middleware_runner
        self.metrics = metrics
        self.logger = get_structured_logger('RenderPipeline')

    async def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Produce the gateway response for an event.

        Args:
            event: API Gateway (payload 2.0) event

        Returns:
            API Gateway response dict
        """
        request_id = (event.get('requestContext') or {}).get('requestId')
        log = self.logger.bind(request_id=request_id)

        middleware = MiddlewareResult()
        if self.middleware_runner is not None:
            middleware = await self.middleware_runner.evaluate(event)
            if middleware.short_circuits:
                return middleware.response

        request = build_edge_request(event)
        original = urlsplit(request.url)
        target = self._target(original, middleware.rewrite_url)
        headers = dict(request.headers)
        headers.update(middleware.request_headers)
        headers.setdefault('x-forwarded-host', original.netloc)
        headers.setdefault('x-forwarded-proto', original.scheme)

        use_cache = self.cache is not None and request.method in CACHEABLE_METHODS
        if use_cache:
            entry = await self.cache.get(target)
            if entry is not None:
                status = 'STALE' if entry.is_stale(self.cache.now_ms()) else 'HIT'
                log.debug('Serving cached response', operation='handle', cache_key=target, cache_status=status)
                cached = UpstreamResponse(
                    status=entry.status,
                    headers=dict(entry.headers),
                    body=b'' if request.method == 'HEAD' else entry.value,
                )
                return self._finish(cached, middleware, status)

        try:
            rendered = await self._fetch(request.method, target, headers, request.body)
        except requests.RequestException as e:
            log.error('Upstream request failed', operation='handle', error=e, target=target)
            return error_response(502, 'UPSTREAM_UNAVAILABLE', 'Upstream server unavailable')

        if use_cache and request.method == 'GET':
            await self._store(target, original.path or '/', rendered)

        return self._finish(rendered, middleware, 'MISS' if use_cache else None)

    async def regenerate(self, key: str) -> None:
        """
        Re-render ``key`` upstream and store the result.

        Used as the regeneration scheduler's callback.
        """
        rendered = await self._fetch('GET', key, {'x-nextjs-regenerate': '1'}, None)
        if not await self._store(key, urlsplit(key).path or '/', rendered):
            self.logger.warning(
                'Regenerated response is not cacheable',
                operation='regenerate',
                cache_key=key,
                status=rendered.status
            )

    def _target(self, original, rewrite_url: Optional[str]) -> str:
        if not rewrite_url:
            return original.path + (f'?{original.query}' if original.query else '')
        rewritten = urlsplit(rewrite_url)
        if rewritten.netloc and rewritten.netloc != original.netloc:
            # External rewrites are proxied as-is.
            return rewrite_url
        return (rewritten.path or '/') + (f'?{rewritten.query}' if rewritten.query else '')

    async def _fetch(self, method, target, headers, body) -> UpstreamResponse:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.upstream.fetch, method, target, headers, body)
        )

    async def _store(self, key: str, path: str, rendered: UpstreamResponse) -> bool:
        if rendered.status != 200:
            return False
        lifetime = cache_lifetime(rendered.headers)
        if lifetime is None:
            return False

        stored_headers = {
            name: value for name, value in rendered.headers.items()
            if name not in (CACHE_STATUS_HEADER, CACHE_TAGS_HEADER)
        }
        try:
            await self.cache.set(
                key,
                rendered.body,
                headers=stored_headers,
                status=rendered.status,
                tags=cache_tags(rendered.headers),
                revalidate_after=self.cache.now_ms() + lifetime * 1000,
                path=path,
            )
        except CacheWriteError as e:
            # The freshly rendered response is still served.
            self.logger.error('Failed to cache rendered response', operation='store', error=e, cache_key=key)
            return False
        return True

    def _finish(
        self,
        rendered: UpstreamResponse,
        middleware: MiddlewareResult,
        cache_status: Optional[str]
    ) -> Dict[str, Any]:
        headers = dict(rendered.headers)
        headers.update(middleware.headers)
        if cache_status:
            headers[CACHE_STATUS_HEADER] = cache_status

        response = body_response(rendered.status, headers, rendered.body)
        cookies = list(rendered.cookies) + list(middleware.cookies)
        if cookies:
            response['cookies'] = cookies
        return response

"""
Edge middleware emulation.

Runs the compiled Next.js middleware for a gateway event and translates
its outcome into the gateway contract. The runner fails open: any failure
it cannot recover from yields the NONE outcome and the request proceeds
without middleware effects.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import MiddlewareExecutionError
from ..utils.metrics_emitter import MetricsEmitter
from ..utils.response_builder import body_response, redirect_response
from ..utils.structured_logger import get_structured_logger
from .edge_environment import EdgeRequest, build_edge_request
from .middleware_loader import CompiledMiddleware, load_middleware
from .node_sandbox import ISOLATED, NATIVE, MiddlewareResponse, NodeSandbox

REWRITE_HEADER = 'x-middleware-rewrite'
NEXT_HEADER = 'x-middleware-next'
OVERRIDE_HEADERS_HEADER = 'x-middleware-override-headers'
REQUEST_HEADER_PREFIX = 'x-middleware-request-'
CONTROL_HEADER_PREFIX = 'x-middleware-'


class MiddlewareOutcome(str, Enum):
    NONE = 'none'
    CONTINUE = 'continue'
    REWRITE = 'rewrite'
    REDIRECT = 'redirect'
    MODIFIED = 'modified'


@dataclass
class MiddlewareResult:
    """
    Outcome of a middleware evaluation.

    Attributes:
        outcome: Terminal state
        rewrite_url: Target URL for REWRITE
        headers: Response headers set by the middleware for CONTINUE and
            REWRITE, to merge into the final response
        cookies: Set-Cookie values set by the middleware
        request_headers: Request header overrides for the upstream request
        response: Complete gateway response for REDIRECT and MODIFIED
        used_fallback: Whether the native fallback produced the result
    """
    outcome: MiddlewareOutcome = MiddlewareOutcome.NONE
    rewrite_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[str] = field(default_factory=list)
    request_headers: Dict[str, str] = field(default_factory=dict)
    response: Optional[Dict[str, Any]] = None
    used_fallback: bool = False

    @property
    def short_circuits(self) -> bool:
        """Whether the result replaces the normal handler."""
        return self.response is not None


def _pass_through_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {
        name: value for name, value in headers.items()
        if not name.startswith(CONTROL_HEADER_PREFIX) and name not in ('content-length', 'content-type')
    }


def _request_overrides(headers: Dict[str, str]) -> Dict[str, str]:
    names = [n.strip() for n in headers.get(OVERRIDE_HEADERS_HEADER, '').split(',') if n.strip()]
    return {
        name: headers[f'{REQUEST_HEADER_PREFIX}{name}']
        for name in names
        if f'{REQUEST_HEADER_PREFIX}{name}' in headers
    }


def interpret_response(response: Optional[MiddlewareResponse]) -> MiddlewareResult:
    """
    Translate a middleware response into a terminal state.

    A middleware that returns nothing continues unmodified.
    """
    if response is None:
        return MiddlewareResult(outcome=MiddlewareOutcome.CONTINUE)

    headers = response.headers
    rewrite_url = headers.get(REWRITE_HEADER)
    if rewrite_url:
        return MiddlewareResult(
            outcome=MiddlewareOutcome.REWRITE,
            rewrite_url=rewrite_url,
            headers=_pass_through_headers(headers),
            cookies=list(response.cookies),
            request_headers=_request_overrides(headers),
        )

    if headers.get(NEXT_HEADER):
        return MiddlewareResult(
            outcome=MiddlewareOutcome.CONTINUE,
            headers=_pass_through_headers(headers),
            cookies=list(response.cookies),
            request_headers=_request_overrides(headers),
        )

    location = headers.get('location')
    if 300 <= response.status < 400 and location:
        gateway = redirect_response(response.status, location)
        if response.cookies:
            gateway['cookies'] = list(response.cookies)
        return MiddlewareResult(
            outcome=MiddlewareOutcome.REDIRECT,
            cookies=list(response.cookies),
            response=gateway,
        )

    gateway = body_response(response.status, _without_control(headers), response.body or b'')
    if response.cookies:
        gateway['cookies'] = list(response.cookies)
    return MiddlewareResult(
        outcome=MiddlewareOutcome.MODIFIED,
        cookies=list(response.cookies),
        response=gateway,
    )


def _without_control(headers: Dict[str, str]) -> Dict[str, str]:
    return {n: v for n, v in headers.items() if not n.startswith(CONTROL_HEADER_PREFIX)}


class MiddlewareRunner:
    """
    Evaluates middleware for gateway events.

    Modes follow the deployment manifest: ``edge-emulated`` runs in the
    isolated context and falls back to native execution on capability
    gaps, ``node-fallback`` runs natively, ``none`` never runs middleware.
    """

    def __init__(
        self,
        middleware: Optional[CompiledMiddleware],
        mode: str = 'edge-emulated',
        metrics: Optional[MetricsEmitter] = None
    ):
        self.middleware = middleware
        self.mode = mode
        self.metrics = metrics
        self.logger = get_structured_logger('MiddlewareRunner')

    async def evaluate(self, event: Dict[str, Any]) -> MiddlewareResult:
        """
        Run middleware for a gateway event.

        Args:
            event: API Gateway (payload 2.0) event

        Returns:
            MiddlewareResult; NONE when middleware is absent, does not
            match, or fails
        """
        if self.mode == 'none' or self.middleware is None:
            return MiddlewareResult()

        start = time.time()
        try:
            request = build_edge_request(event)
            if not self.middleware.matches(request.pathname):
                self.logger.debug('Path does not match middleware', operation='match', path=request.pathname)
                return MiddlewareResult()
            result = await self._execute(request)
        except Exception as e:
            # Middleware must never block the request it augments.
            self.logger.error('Middleware evaluation failed, continuing without it', operation='evaluate', error=e)
            result = MiddlewareResult()

        duration_ms = (time.time() - start) * 1000
        if self.metrics is not None:
            self.metrics.emit_middleware_outcome(result.outcome.value, duration_ms)
        self.logger.info(
            'Middleware evaluated',
            operation='evaluate',
            outcome=result.outcome.value,
            fallback=result.used_fallback,
            duration_ms=duration_ms
        )
        return result

    async def _execute(self, request: EdgeRequest) -> MiddlewareResult:
        if self.mode == 'node-fallback':
            return await self._execute_native(request)

        try:
            response = await self.middleware.execute(request, ISOLATED)
        except MiddlewareExecutionError as e:
            if not e.capability_gap:
                self.logger.warning(
                    'Middleware failed, continuing without it',
                    operation='execute',
                    error_name=e.error_name,
                    error_message=e.message
                )
                return MiddlewareResult()
            self.logger.info(
                'Edge emulation lacks a capability, falling back to native execution',
                operation='fallback',
                error_name=e.error_name,
                error_message=e.message
            )
            if self.metrics is not None:
                self.metrics.emit_middleware_fallback(e.error_name)
            result = await self._execute_native(request)
            result.used_fallback = True
            return result

        return interpret_response(response)

    async def _execute_native(self, request: EdgeRequest) -> MiddlewareResult:
        try:
            response = await self.middleware.execute(request, NATIVE)
        except MiddlewareExecutionError as e:
            self.logger.warning(
                'Native middleware execution failed, continuing without it',
                operation='execute_native',
                error_name=e.error_name,
                error_message=e.message
            )
            return MiddlewareResult()
        return interpret_response(response)


async def run_middleware(
    manifest: Optional[Dict[str, Any]],
    event: Dict[str, Any],
    project_root: str,
    sandbox: Optional[NodeSandbox] = None,
    mode: str = 'edge-emulated'
) -> Optional[Dict[str, Any]]:
    """
    Run middleware for one event.

    Args:
        manifest: Parsed Next.js middleware manifest
        event: API Gateway event
        project_root: Directory holding the ``.next`` build output
        sandbox: Executor; defaults to a NodeSandbox with default settings
        mode: Middleware mode from the deployment manifest

    Returns:
        Gateway response for REDIRECT and MODIFIED outcomes, None to
        proceed with normal handling
    """
    middleware = load_middleware(manifest, project_root, sandbox or NodeSandbox())
    result = await MiddlewareRunner(middleware, mode=mode).evaluate(event)
    return result.response

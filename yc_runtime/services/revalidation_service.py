"""
On-demand revalidation API.

Authorizes a revalidation request and invalidates the ISR cache by path or
by tag.
"""

import base64
import hashlib
import hmac
import ipaddress
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional
from urllib.parse import parse_qs

from ..exceptions import CacheWriteError
from ..utils.response_builder import error_response, success_response
from ..utils.structured_logger import get_structured_logger
from .isr_cache import ISRCache

SIGNATURE_HEADER = 'x-revalidate-signature'
AUTH_MODES = ('hmac', 'ip-whitelist', 'both')


@dataclass
class RevalidationRequest:
    path: Optional[str] = None
    tag: Optional[str] = None
    secret: Optional[str] = None
    raw_body: bytes = b''
    headers: Optional[Dict[str, str]] = None
    client_ip: Optional[str] = None


def parse_revalidation_request(event: Dict[str, Any]) -> RevalidationRequest:
    """
    Extract path/tag/secret from a gateway event.

    The JSON body wins over the query string.

    Raises:
        ValueError: If the body is not a JSON object
    """
    raw = event.get('body') or ''
    raw_body = base64.b64decode(raw) if event.get('isBase64Encoded') else raw.encode('utf-8')

    params: Dict[str, Any] = {
        name: values[0] for name, values in parse_qs(event.get('rawQueryString') or '').items()
    }
    if raw_body.strip():
        body = json.loads(raw_body)
        if not isinstance(body, dict):
            raise ValueError('Request body must be a JSON object')
        params.update({k: v for k, v in body.items() if v is not None})

    headers = {str(k).lower(): str(v) for k, v in (event.get('headers') or {}).items()}
    forwarded_for = headers.get('x-forwarded-for', '')
    source_ip = ((event.get('requestContext') or {}).get('http') or {}).get('sourceIp')

    return RevalidationRequest(
        path=params.get('path') or None,
        tag=params.get('tag') or None,
        secret=params.get('secret'),
        raw_body=raw_body,
        headers=headers,
        client_ip=forwarded_for.split(',')[0].strip() or source_ip,
    )


class RevalidationAuthorizer:
    """
    Checks revalidation credentials.

    ``hmac`` accepts the shared secret in the request or an
    ``x-revalidate-signature`` header holding the hex HMAC-SHA256 of the raw
    body. ``ip-whitelist`` checks the client IP against addresses or CIDR
    networks. ``both`` requires both. An unconfigured secret or allow-list
    disables that check.
    """

    def __init__(
        self,
        mode: str = 'hmac',
        secret: Optional[str] = None,
        allowed_ips: Iterable[str] = ()
    ):
        if mode not in AUTH_MODES:
            raise ValueError(f"Invalid revalidation auth mode: {mode}")
        self.mode = mode
        self.secret = secret
        self.allowed_networks = tuple(ipaddress.ip_network(ip.strip(), strict=False) for ip in allowed_ips if ip.strip())
        self.logger = get_structured_logger('RevalidationAuthorizer')
        if mode in ('hmac', 'both') and not secret:
            self.logger.warning('No revalidation secret configured, secret check disabled', operation='init')
        if mode in ('ip-whitelist', 'both') and not self.allowed_networks:
            self.logger.warning('No revalidation IP allow-list configured, IP check disabled', operation='init')

    def authorize(self, request: RevalidationRequest) -> bool:
        if self.mode in ('hmac', 'both') and not self._check_secret(request):
            return False
        if self.mode in ('ip-whitelist', 'both') and not self._check_ip(request.client_ip):
            return False
        return True

    def _check_secret(self, request: RevalidationRequest) -> bool:
        if not self.secret:
            return True
        if request.secret is not None and hmac.compare_digest(str(request.secret), self.secret):
            return True
        signature = (request.headers or {}).get(SIGNATURE_HEADER)
        if signature:
            expected = hmac.new(self.secret.encode('utf-8'), request.raw_body, hashlib.sha256).hexdigest()
            return hmac.compare_digest(signature.lower(), expected)
        return False

    def _check_ip(self, client_ip: Optional[str]) -> bool:
        if not self.allowed_networks:
            return True
        if not client_ip:
            return False
        try:
            address = ipaddress.ip_address(client_ip)
        except ValueError:
            return False
        return any(address in network for network in self.allowed_networks)


class RevalidationService:
    """
    Handles revalidation requests against the ISR cache.

    When both ``path`` and ``tag`` are given, the path is revalidated and
    the tag ignored; a warning is logged.
    """

    def __init__(
        self,
        cache: ISRCache,
        authorizer: RevalidationAuthorizer,
        clock: Callable[[], float] = time.time
    ):
        self.cache = cache
        self.authorizer = authorizer
        self.clock = clock
        self.logger = get_structured_logger('RevalidationService')

    def _timestamp(self) -> str:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc).isoformat().replace('+00:00', 'Z')

    async def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process a revalidation event.

        Returns:
            200 on success, 400 for missing parameters or a malformed body,
            401 when unauthorized, 500 when the cache operation fails
        """
        try:
            request = parse_revalidation_request(event)
        except ValueError as e:
            self.logger.warning('Malformed revalidation request', operation='parse', error_message=str(e))
            return error_response(400, 'INVALID_REQUEST', str(e))

        if not self.authorizer.authorize(request):
            self.logger.warning('Unauthorized revalidation attempt', operation='authorize', client_ip=request.client_ip)
            return error_response(401, 'UNAUTHORIZED', 'Unauthorized revalidation attempt')

        if not request.path and not request.tag:
            return error_response(400, 'MISSING_PARAMETER', 'Either "path" or "tag" must be provided')

        if request.path and request.tag:
            self.logger.warning(
                'Both path and tag supplied, revalidating path only',
                operation='handle',
                path=request.path,
                tag=request.tag
            )

        try:
            if request.path:
                count = await self.cache.revalidate_path(request.path)
                return success_response(200, {
                    'success': True,
                    'message': 'Path revalidated successfully',
                    'path': request.path,
                    'entries': count,
                    'revalidatedAt': self._timestamp(),
                })
            count = await self.cache.revalidate_tag(request.tag)
            return success_response(200, {
                'success': True,
                'message': 'Tag revalidated successfully',
                'tag': request.tag,
                'entries': count,
                'revalidatedAt': self._timestamp(),
            })
        except CacheWriteError as e:
            self.logger.error('Revalidation failed', operation='handle', error=e)
            details = {'path': request.path} if request.path else {'tag': request.tag}
            return error_response(500, 'REVALIDATION_FAILED', str(e), details=details)

"""
HTTP client for the upstream Next.js server.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin

import requests

from ..utils.structured_logger import get_structured_logger

DEFAULT_UPSTREAM_TIMEOUT_SECONDS = 25

# Headers that describe the transfer rather than the content.
HOP_BY_HOP_HEADERS = frozenset([
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'te',
    'trailer',
    'transfer-encoding',
    'upgrade',
    'content-length',
    'content-encoding',
])


@dataclass
class UpstreamResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[str] = field(default_factory=list)
    body: bytes = b''


class UpstreamClient:
    """
    Forwards requests to the Next.js server process.

    Redirects are passed through to the client, not followed.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = DEFAULT_UPSTREAM_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize upstream client.

        Args:
            base_url: Next.js server URL (e.g. http://127.0.0.1:3000)
            timeout_seconds: Per-request timeout
            session: Optional requests session for testing
        """
        self.base_url = base_url.rstrip('/') + '/'
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.logger = get_structured_logger('UpstreamClient')

    def url_for(self, target: str) -> str:
        """Absolute URL for a path or an absolute rewrite target."""
        return urljoin(self.base_url, target)

    def fetch(
        self,
        method: str,
        target: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[bytes] = None
    ) -> UpstreamResponse:
        """
        Send one request upstream.

        Args:
            method: HTTP method
            target: Path with query, or an absolute URL
            headers: Request headers
            body: Request body

        Returns:
            UpstreamResponse

        Raises:
            requests.RequestException: On connection failures and timeouts
        """
        forwarded = {
            name: value for name, value in (headers or {}).items()
            if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() != 'host'
        }
        response = self.session.request(
            method,
            self.url_for(target),
            headers=forwarded,
            data=body,
            timeout=self.timeout_seconds,
            allow_redirects=False,
        )

        cookies = []
        raw_headers = getattr(response.raw, 'headers', None)
        if raw_headers is not None and hasattr(raw_headers, 'getlist'):
            cookies = list(raw_headers.getlist('Set-Cookie'))
        elif 'set-cookie' in response.headers:
            cookies = [response.headers['set-cookie']]

        return UpstreamResponse(
            status=response.status_code,
            headers={
                name.lower(): value for name, value in response.headers.items()
                if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() != 'set-cookie'
            },
            cookies=cookies,
            body=response.content,
        )

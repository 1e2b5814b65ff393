"""
Edge request construction from API Gateway events.

Builds the request description the edge runtime turns into a NextRequest:
absolute URL and its parsed components, cookie map, coarse geo hints and
client IP.
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlsplit

GEO_HEADERS = {
    'country': ('x-geo-country', 'cloudfront-viewer-country'),
    'region': ('x-geo-region', 'cloudfront-viewer-country-region'),
    'city': ('x-geo-city', 'cloudfront-viewer-city'),
    'latitude': ('x-geo-latitude', 'cloudfront-viewer-latitude'),
    'longitude': ('x-geo-longitude', 'cloudfront-viewer-longitude'),
}


def parse_cookies(cookie_header: str) -> Dict[str, str]:
    """
    Parse a Cookie header into a name -> value map.

    Example:
        >>> parse_cookies('a=1; b=hello%20world')
        {'a': '1', 'b': 'hello world'}
    """
    cookies: Dict[str, str] = {}
    for pair in cookie_header.split(';'):
        name, _, value = pair.strip().partition('=')
        if name:
            cookies[name] = unquote(value)
    return cookies


@dataclass
class EdgeRequest:
    """
    Request as seen by edge middleware.

    Attributes:
        url: Absolute request URL
        method: HTTP method
        headers: Lower-cased request headers
        body: Raw body, or None
        cookies: Cookie map
        geo: Geo hints present in forwarded headers
        ip: Client IP
    """
    url: str
    method: str = 'GET'
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    cookies: Dict[str, str] = field(default_factory=dict)
    geo: Dict[str, str] = field(default_factory=dict)
    ip: Optional[str] = None

    @property
    def pathname(self) -> str:
        return urlsplit(self.url).path or '/'

    @property
    def next_url(self) -> Dict[str, str]:
        """URL components in the shape of ``request.nextUrl``."""
        parts = urlsplit(self.url)
        return {
            'pathname': parts.path or '/',
            'search': f'?{parts.query}' if parts.query else '',
            'href': self.url,
            'origin': f'{parts.scheme}://{parts.netloc}',
            'protocol': f'{parts.scheme}:',
            'hostname': parts.hostname or '',
            'port': str(parts.port) if parts.port else '',
        }

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for the edge runtime process."""
        return {
            'url': self.url,
            'method': self.method,
            'headers': self.headers,
            'body': base64.b64encode(self.body).decode('ascii') if self.body is not None else None,
            'nextUrl': self.next_url,
            'cookies': self.cookies,
            'geo': self.geo,
            'ip': self.ip,
        }


def _first_header(headers: Dict[str, str], names) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value:
            return value
    return None


def build_edge_request(event: Dict[str, Any]) -> EdgeRequest:
    """
    Build an EdgeRequest from an API Gateway (payload 2.0) event.

    Args:
        event: Gateway event

    Returns:
        EdgeRequest
    """
    headers = {str(k).lower(): str(v) for k, v in (event.get('headers') or {}).items() if v is not None}
    request_context = event.get('requestContext') or {}
    http = request_context.get('http') or {}

    protocol = headers.get('x-forwarded-proto', 'https').split(',')[0].strip()
    # Behind a proxy or CDN the public host arrives in x-forwarded-host.
    host = (
        headers.get('x-forwarded-host', '').split(',')[0].strip()
        or headers.get('host')
        or request_context.get('domainName')
        or 'localhost'
    )
    raw_path = event.get('rawPath') or http.get('path') or '/'
    query = event.get('rawQueryString') or ''
    url = f'{protocol}://{host}{raw_path}' + (f'?{query}' if query else '')

    cookies: Dict[str, str] = {}
    if headers.get('cookie'):
        cookies.update(parse_cookies(headers['cookie']))
    event_cookies: List[str] = event.get('cookies') or []
    if event_cookies:
        cookies.update(parse_cookies('; '.join(event_cookies)))
        headers.setdefault('cookie', '; '.join(event_cookies))

    geo = {}
    for field_name, header_names in GEO_HEADERS.items():
        value = _first_header(headers, header_names)
        if value:
            geo[field_name] = value

    forwarded_for = headers.get('x-forwarded-for', '')
    ip = forwarded_for.split(',')[0].strip() or http.get('sourceIp')

    body = None
    raw_body = event.get('body')
    if raw_body:
        body = base64.b64decode(raw_body) if event.get('isBase64Encoded') else raw_body.encode('utf-8')

    return EdgeRequest(
        url=url,
        method=(http.get('method') or event.get('httpMethod') or 'GET').upper(),
        headers=headers,
        body=body,
        cookies=cookies,
        geo=geo,
        ip=ip,
    )

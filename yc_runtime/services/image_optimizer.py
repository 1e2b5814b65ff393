"""
Image optimization for ``next/image`` requests.

``/_next/image?url=...&w=...&q=...`` is answered with the source image
resized to the requested width and re-encoded in the best format the client
accepts. Optimized images are cached in Object Storage under a hash of the
request, so each variant is encoded once.
"""

import hashlib
import mimetypes
import os
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlsplit

import requests
from PIL import Image, ImageOps, features

from ..data_access.exceptions import ObjectNotFoundError, StorageError
from ..data_access.object_storage_client import ObjectStorageClient
from ..exceptions import ImageRequestError
from ..utils.metrics_emitter import MetricsEmitter
from ..utils.response_builder import body_response, error_response
from ..utils.structured_logger import get_structured_logger

AVIF = 'image/avif'
WEBP = 'image/webp'
PNG = 'image/png'
JPEG = 'image/jpeg'
GIF = 'image/gif'
SVG = 'image/svg+xml'
ICO = 'image/x-icon'
ICO_ALT = 'image/vnd.microsoft.icon'

# Vector and icon sources are served as stored
PASSTHROUGH_TYPES = frozenset([SVG, ICO, ICO_ALT])

PILLOW_FORMATS = {AVIF: 'AVIF', WEBP: 'WEBP', PNG: 'PNG', JPEG: 'JPEG'}

MAX_WIDTH = 4000
CACHE_KEY_PREFIX = 'images'
CACHE_STATUS_HEADER = 'x-nextjs-cache'
DEFAULT_SOURCE_TIMEOUT_SECONDS = 10
SVG_CSP = "script-src 'none'; frame-src 'none'; sandbox;"

mimetypes.add_type(AVIF, '.avif')
mimetypes.add_type(WEBP, '.webp')
mimetypes.add_type(ICO, '.ico')


def available_formats() -> Tuple[str, ...]:
    """Modern formats the installed Pillow can encode, best first."""
    return tuple(
        mime for mime, feature in ((AVIF, 'avif'), (WEBP, 'webp'))
        if features.check(feature)
    )


@dataclass(frozen=True)
class ImageParams:
    url: str
    width: Optional[int] = None
    quality: Optional[int] = None


@dataclass(frozen=True)
class ImageSource:
    body: bytes
    content_type: str


def _bounded_int(params: Mapping[str, Sequence[str]], name: str, upper: int, message: str) -> Optional[int]:
    values = params.get(name)
    if not values:
        return None
    try:
        value = int(values[0])
    except ValueError as e:
        raise ImageRequestError(message) from e
    if value < 1 or value > upper:
        raise ImageRequestError(message)
    return value


def parse_image_params(query: str) -> ImageParams:
    """
    Parse the ``url``, ``w`` and ``q`` query parameters.

    Raises:
        ImageRequestError: If ``url`` is missing or ``w``/``q`` are out of range
    """
    params = parse_qs(query or '')
    url = (params.get('url') or [''])[0]
    if not url:
        raise ImageRequestError('Missing required parameter: url', error_code='MISSING_PARAMETER')
    return ImageParams(
        url=url,
        width=_bounded_int(params, 'w', MAX_WIDTH, 'Invalid width parameter'),
        quality=_bounded_int(params, 'q', 100, 'Invalid quality parameter'),
    )


def accepted_formats(accept: str, supported: Sequence[str]) -> Tuple[str, ...]:
    """Supported modern formats listed in an Accept header, in preference order."""
    return tuple(mime for mime in supported if mime in accept)


def negotiate_format(source_type: str, accepted: Sequence[str]) -> str:
    """
    Output format for a source image.

    The first accepted modern format wins; otherwise PNG and GIF sources
    become PNG and everything else JPEG.
    """
    if source_type in PASSTHROUGH_TYPES:
        return source_type
    if accepted:
        return accepted[0]
    return PNG if source_type in (PNG, GIF) else JPEG


def image_cache_key(params: ImageParams, accepted: Sequence[str]) -> str:
    """
    Object key of an optimized variant.

    Only the formats the client can take enter the hash, so clients with
    different but equivalent Accept headers share one cached variant.
    """
    digest = hashlib.sha256()
    for part in (params.url, str(params.width or ''), str(params.quality or ''), ','.join(accepted)):
        digest.update(part.encode('utf-8'))
        digest.update(b'\0')
    return f'{CACHE_KEY_PREFIX}/{digest.hexdigest()}'


def _prepare_mode(img: Image.Image, target: str) -> Image.Image:
    has_alpha = img.mode in ('RGBA', 'LA', 'PA') or 'transparency' in img.info
    if target == JPEG:
        return img if img.mode in ('RGB', 'L') else img.convert('RGB')
    if target == PNG and img.mode in ('L', 'LA', 'P', 'RGB', 'RGBA'):
        return img
    wanted = 'RGBA' if has_alpha else 'RGB'
    return img if img.mode == wanted else img.convert(wanted)


def _save_options(target: str, quality: int) -> Dict[str, Any]:
    if target == PNG:
        return {'optimize': True}
    if target == JPEG:
        return {'quality': quality, 'optimize': True, 'progressive': True}
    return {'quality': quality}


def transform_image(data: bytes, target: str, width: Optional[int], quality: int) -> bytes:
    """
    Resize and re-encode an image.

    The image is oriented by its EXIF tag, scaled down to ``width`` keeping
    its aspect ratio (never enlarged) and encoded as ``target``.

    Raises:
        ImageRequestError: If the source is not a readable image
    """
    try:
        with Image.open(BytesIO(data)) as source:
            img = ImageOps.exif_transpose(source)
            if width and img.width > width:
                height = max(1, round(img.height * width / img.width))
                img = img.resize((width, height), Image.Resampling.LANCZOS)
            img = _prepare_mode(img, target)
            out = BytesIO()
            img.save(out, format=PILLOW_FORMATS[target], **_save_options(target, quality))
            return out.getvalue()
    except (OSError, Image.DecompressionBombError) as e:
        raise ImageRequestError(f'Source is not a valid image: {e}', error_code='INVALID_IMAGE') from e


class ImageOptimizer:
    """
    Serves optimized ``next/image`` variants.

    Relative URLs are read from the sources bucket, then from the build's
    ``.next/static`` and ``public`` directories. Absolute URLs are fetched
    only from hosts in ``allowed_hosts``.
    """

    def __init__(
        self,
        project_root: str = '.',
        cache_store: Optional[ObjectStorageClient] = None,
        sources_store: Optional[ObjectStorageClient] = None,
        allowed_hosts: Sequence[str] = (),
        quality: int = 75,
        max_age_seconds: int = 365 * 24 * 3600,
        formats: Optional[Sequence[str]] = None,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = DEFAULT_SOURCE_TIMEOUT_SECONDS,
        metrics: Optional[MetricsEmitter] = None
    ):
        """
        Initialize image optimizer.

        Args:
            project_root: Directory holding the unpacked Next.js build
            cache_store: Bucket for optimized variants (None disables caching)
            sources_store: Bucket holding source images for relative URLs
            allowed_hosts: Hosts remote source images may be fetched from
            quality: Encoder quality when the request has no ``q``
            max_age_seconds: Cache-Control max-age of responses
            formats: Modern output formats, best first (default: what Pillow can encode)
            session: Optional requests session for testing
            timeout_seconds: Timeout for remote source fetches
            metrics: Optional metrics emitter
        """
        self.cache_store = cache_store
        self.sources_store = sources_store
        self.allowed_hosts = frozenset(host.lower() for host in allowed_hosts)
        self.quality = quality
        self.max_age_seconds = max_age_seconds
        self.formats = tuple(formats) if formats is not None else available_formats()
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.local_roots = (
            ('/_next/static/', os.path.join(project_root, '.next', 'static')),
            ('/', os.path.join(project_root, 'public')),
        )
        self.logger = get_structured_logger('ImageOptimizer')

    def _record(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.emit_image_request(result)

    def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Answer an image optimization request.

        Args:
            event: API Gateway event (payload format 2.0)

        Returns:
            API Gateway response; 4xx/5xx error responses for bad requests
            and unreachable sources
        """
        headers = {name.lower(): value for name, value in (event.get('headers') or {}).items()}
        try:
            params = parse_image_params(event.get('rawQueryString') or '')
            accepted = accepted_formats(headers.get('accept', ''), self.formats)
            key = image_cache_key(params, accepted)

            cached = self._read_cache(key)
            if cached is not None:
                self._record('hit')
                return self._respond(cached.body, cached.content_type, 'HIT')

            source = self.load_source(params.url)
            if source.content_type in PASSTHROUGH_TYPES:
                self._record('passthrough')
                return self._respond(source.body, source.content_type, None)

            target = negotiate_format(source.content_type, accepted)
            body = transform_image(source.body, target, params.width, params.quality or self.quality)
            self._write_cache(key, body, target)
            self._record('miss')
            self.logger.debug(
                'Optimized image',
                operation='optimize',
                url=params.url,
                width=params.width,
                format=target,
                source_bytes=len(source.body),
                output_bytes=len(body)
            )
            return self._respond(body, target, 'MISS')

        except ImageRequestError as e:
            self._record('error')
            self.logger.warning(
                'Image request rejected',
                operation='handle',
                error_code=e.error_code,
                status_code=e.status_code,
                reason=e.message
            )
            return error_response(e.status_code, e.error_code, e.message)

    def _respond(self, body: bytes, content_type: str, cache_status: Optional[str]) -> Dict[str, Any]:
        headers = {
            'content-type': content_type,
            'cache-control': f'public, max-age={self.max_age_seconds}, immutable',
            'vary': 'Accept',
        }
        if content_type == SVG:
            headers['content-security-policy'] = SVG_CSP
        if cache_status:
            headers[CACHE_STATUS_HEADER] = cache_status
        return body_response(200, headers, body)

    def _read_cache(self, key: str) -> Optional[ImageSource]:
        if self.cache_store is None:
            return None
        try:
            body, content_type = self.cache_store.get_object_with_type(key)
        except ObjectNotFoundError:
            return None
        except StorageError as e:
            self.logger.warning('Image cache read failed, optimizing again', operation='read_cache', key=key, error=str(e))
            return None
        return ImageSource(body, content_type or JPEG)

    def _write_cache(self, key: str, body: bytes, content_type: str) -> None:
        if self.cache_store is None:
            return
        try:
            self.cache_store.put_object(
                key,
                body,
                content_type=content_type,
                cache_control=f'public, max-age={self.max_age_seconds}',
            )
        except StorageError as e:
            self.logger.warning('Image cache write failed', operation='write_cache', key=key, error=str(e))

    def load_source(self, url: str) -> ImageSource:
        """
        Load a source image by its ``url`` parameter.

        Raises:
            ImageRequestError: If the URL is not allowed or the image is missing
        """
        if url.startswith('/') and not url.startswith('//'):
            return self._load_local(urlsplit(url).path)
        parts = urlsplit(url)
        if parts.scheme not in ('http', 'https') or not parts.hostname:
            raise ImageRequestError('Unsupported url parameter', error_code='INVALID_URL')
        if parts.hostname.lower() not in self.allowed_hosts:
            raise ImageRequestError(f'Host not allowed: {parts.hostname}', error_code='HOST_NOT_ALLOWED')
        return self._load_remote(url)

    def _load_local(self, path: str) -> ImageSource:
        if self.sources_store is not None:
            try:
                body, content_type = self.sources_store.get_object_with_type(path.lstrip('/'))
                return ImageSource(body, _content_type(content_type, path))
            except ObjectNotFoundError:
                pass
            except StorageError as e:
                raise ImageRequestError(
                    'Source image storage unavailable', status_code=502, error_code='SOURCE_UNAVAILABLE'
                ) from e

        for prefix, root in self.local_roots:
            if not path.startswith(prefix):
                continue
            root = os.path.realpath(root)
            candidate = os.path.realpath(os.path.join(root, path[len(prefix):]))
            if os.path.commonpath([root, candidate]) != root or not os.path.isfile(candidate):
                continue
            with open(candidate, 'rb') as f:
                return ImageSource(f.read(), _content_type(None, candidate))

        raise ImageRequestError('Image not found', status_code=404, error_code='IMAGE_NOT_FOUND')

    def _load_remote(self, url: str) -> ImageSource:
        try:
            response = self.session.get(url, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise ImageRequestError(
                'Source image unreachable', status_code=502, error_code='SOURCE_UNAVAILABLE'
            ) from e
        if response.status_code == 404:
            raise ImageRequestError('Image not found', status_code=404, error_code='IMAGE_NOT_FOUND')
        if not response.ok:
            raise ImageRequestError(
                f'Source image answered {response.status_code}', status_code=502, error_code='SOURCE_UNAVAILABLE'
            )
        return ImageSource(response.content, _content_type(response.headers.get('content-type'), url))


def _content_type(declared: Optional[str], name: str) -> str:
    if declared:
        return declared.split(';', 1)[0].strip().lower()
    guessed, _ = mimetypes.guess_type(urlsplit(name).path)
    return guessed or JPEG

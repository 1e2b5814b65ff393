"""
Cache entry data model and storage key derivation.

A cached render is split across two stores: the body lives in Object
Storage under a hashed, sharded key, and the metadata row lives in the
Document API under a key namespaced by build.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

METADATA_SORT_KEY = 'metadata'
TAG_PARTITION_PREFIX = 'tag#'


def metadata_key(build_id: str, key: str) -> str:
    """
    Partition key of an entry's metadata row: ``{buildId}#{key}``.

    Example:
        >>> metadata_key('b1', '/blog/hello')
        'b1#/blog/hello'
    """
    return f'{build_id}#{key}'


def split_metadata_key(value: str) -> tuple:
    """
    Split a metadata partition key back into (build_id, key).

    Build ids never contain '#', so the first separator is authoritative.
    """
    build_id, _, key = value.partition('#')
    return build_id, key


def blob_key(prefix: str, build_id: str, key: str) -> str:
    """
    Object Storage key of an entry's body.

    Layout: ``{prefix}/{buildId}/{sha256[:2]}/{sha256}``. The two-character
    shard spreads objects across storage partitions.

    Example:
        >>> blob_key('cache', 'b1', '/').startswith('cache/b1/')
        True
    """
    digest = hashlib.sha256(key.encode('utf-8')).hexdigest()
    return f'{prefix}/{build_id}/{digest[:2]}/{digest}'


def tag_partition_key(tag: str) -> str:
    """Partition key of a tag index row: ``tag#{tag}``."""
    return f'{TAG_PARTITION_PREFIX}{tag}'


def path_from_key(key: str) -> str:
    """
    Default index path for a cache key: the key without query or variant suffix.

    Example:
        >>> path_from_key('/products/1?ref=home')
        '/products/1'
    """
    path = key.split('?', 1)[0].split('#', 1)[0]
    return path or '/'


@dataclass
class CacheEntry:
    """
    A cached render.

    Attributes:
        key: Logical cache key (page path plus variant)
        value: Response body bytes
        headers: Response headers replayed verbatim
        status: HTTP status code replayed
        tags: Labels used for fan-out invalidation
        revalidate_after: Epoch milliseconds after which the entry is stale
        build_id: Deployment that produced the entry
        path: Path the entry is indexed under for path invalidation
        last_modified: Epoch milliseconds of the write
    """

    key: str
    value: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    status: int = 200
    tags: List[str] = field(default_factory=list)
    revalidate_after: Optional[int] = None
    build_id: str = ''
    path: Optional[str] = None
    last_modified: int = 0

    def is_stale(self, now_ms: int) -> bool:
        """Whether the current time is past the revalidation deadline."""
        return self.revalidate_after is not None and now_ms > self.revalidate_after

    def to_metadata_item(self, blob: str, expires_at: int) -> Dict[str, Any]:
        """
        Build the Document API row for this entry.

        Args:
            blob: Object Storage key of the body
            expires_at: Epoch seconds of the outer retention TTL

        Returns:
            Item dict
        """
        item = {
            'pk': metadata_key(self.build_id, self.key),
            'sk': METADATA_SORT_KEY,
            'cacheKey': self.key,
            'buildId': self.build_id,
            'headers': dict(self.headers),
            'status': int(self.status),
            'tags': list(self.tags),
            'path': self.path or path_from_key(self.key),
            'blobKey': blob,
            'lastModified': int(self.last_modified),
            'expiresAt': int(expires_at),
        }
        if self.revalidate_after is not None:
            item['revalidateAfter'] = int(self.revalidate_after)
        return item

    @classmethod
    def from_metadata_item(cls, item: Dict[str, Any], value: bytes = b'') -> 'CacheEntry':
        """
        Rebuild an entry from its metadata row and body.

        Args:
            item: Document API row
            value: Body bytes fetched from Object Storage

        Returns:
            CacheEntry instance
        """
        revalidate_after = item.get('revalidateAfter')
        return cls(
            key=item['cacheKey'],
            value=value,
            headers={str(k): str(v) for k, v in (item.get('headers') or {}).items()},
            status=int(item.get('status', 200)),
            tags=[str(tag) for tag in item.get('tags') or []],
            revalidate_after=int(revalidate_after) if revalidate_after is not None else None,
            build_id=item.get('buildId', ''),
            path=item.get('path'),
            last_modified=int(item.get('lastModified', 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the cache boundary shape (value left as bytes)."""
        return {
            'value': self.value,
            'headers': dict(self.headers),
            'status': self.status,
            'tags': list(self.tags),
            'revalidateAfter': self.revalidate_after,
        }

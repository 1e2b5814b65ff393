"""
Unit tests for the cache entry model and key derivation.
"""
import hashlib

from yc_runtime.models.cache_entry import (
    CacheEntry,
    blob_key,
    metadata_key,
    path_from_key,
    split_metadata_key,
    tag_partition_key,
)


class TestKeyDerivation:
    """Test suite for storage key helpers."""

    def test_metadata_key_namespaces_by_build(self):
        assert metadata_key('b1', '/blog/hello') == 'b1#/blog/hello'

    def test_split_metadata_key_keeps_hashes_in_key(self):
        assert split_metadata_key('b1#/docs#section') == ('b1', '/docs#section')

    def test_blob_key_is_sharded_sha256(self):
        digest = hashlib.sha256(b'/blog/hello').hexdigest()
        assert blob_key('cache', 'b1', '/blog/hello') == f'cache/b1/{digest[:2]}/{digest}'

    def test_blob_key_differs_per_build(self):
        assert blob_key('cache', 'b1', '/') != blob_key('cache', 'b2', '/')

    def test_tag_partition_key(self):
        assert tag_partition_key('posts') == 'tag#posts'

    def test_path_from_key_strips_query(self):
        assert path_from_key('/products/1?ref=home') == '/products/1'
        assert path_from_key('?only=query') == '/'


class TestCacheEntry:
    """Test suite for CacheEntry."""

    def test_is_stale_only_after_deadline(self):
        entry = CacheEntry(key='/', value=b'', revalidate_after=1000)
        assert entry.is_stale(999) is False
        assert entry.is_stale(1000) is False
        assert entry.is_stale(1001) is True

    def test_entry_without_deadline_is_never_stale(self):
        assert CacheEntry(key='/', value=b'').is_stale(10 ** 15) is False

    def test_metadata_item_round_trip(self):
        # Arrange
        entry = CacheEntry(
            key='/blog/hello',
            value=b'<html></html>',
            headers={'content-type': 'text/html'},
            status=200,
            tags=['posts', 'hello'],
            revalidate_after=5000,
            build_id='b1',
            last_modified=4000,
        )

        # Act
        item = entry.to_metadata_item('cache/b1/ab/abc', expires_at=99)
        restored = CacheEntry.from_metadata_item(item, value=entry.value)

        # Assert
        assert item['pk'] == 'b1#/blog/hello'
        assert item['sk'] == 'metadata'
        assert item['path'] == '/blog/hello'
        assert item['blobKey'] == 'cache/b1/ab/abc'
        assert item['expiresAt'] == 99
        assert restored == CacheEntry(
            key='/blog/hello',
            value=b'<html></html>',
            headers={'content-type': 'text/html'},
            status=200,
            tags=['posts', 'hello'],
            revalidate_after=5000,
            build_id='b1',
            path='/blog/hello',
            last_modified=4000,
        )

    def test_metadata_item_omits_missing_deadline(self):
        item = CacheEntry(key='/', value=b'', build_id='b1').to_metadata_item('k', 1)
        assert 'revalidateAfter' not in item

    def test_to_dict_shape(self):
        entry = CacheEntry(key='/', value=b'x', tags=['a'], revalidate_after=7)
        assert entry.to_dict() == {
            'value': b'x',
            'headers': {},
            'status': 200,
            'tags': ['a'],
            'revalidateAfter': 7,
        }

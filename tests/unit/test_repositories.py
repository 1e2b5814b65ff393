"""
Unit tests for the metadata and lock repositories.
"""
from unittest.mock import Mock

import pytest

from yc_runtime.data_access.cache_metadata_repository import CacheMetadataRepository
from yc_runtime.data_access.document_store_client import DocumentStoreClient
from yc_runtime.data_access.exceptions import ConditionalCheckFailedError
from yc_runtime.data_access.regeneration_locks_repository import RegenerationLocksRepository


@pytest.fixture
def mock_client():
    client = Mock(spec=DocumentStoreClient)
    client.batch_write.return_value = 1
    return client


@pytest.fixture
def repository(mock_client):
    return CacheMetadataRepository(
        'entries', 'tags', 'paths', client=mock_client, batch_write_limit=25
    )


class TestCacheMetadataRepository:
    """Test suite for CacheMetadataRepository."""

    def test_get_metadata_uses_metadata_sort_key(self, repository, mock_client):
        mock_client.get_item.return_value = {'pk': 'b1#/'}

        assert repository.get_metadata('b1#/') == {'pk': 'b1#/'}
        mock_client.get_item.assert_called_once_with(
            table_name='entries', key={'pk': 'b1#/', 'sk': 'metadata'}
        )

    def test_put_tag_rows_deduplicates_and_chunks(self, repository, mock_client):
        # Arrange
        tags = [f't{i}' for i in range(30)] + ['t0']

        # Act
        repository.put_tag_rows('b1#/a', tags, expires_at=123)

        # Assert
        args, kwargs = mock_client.batch_write.call_args
        assert args[0] == 'tags'
        rows = args[1]
        assert len(rows) == 30
        assert rows[0] == {'pk': 'tag#t0', 'sk': 'b1#/a', 'tag': 't0', 'expiresAt': 123}
        assert kwargs == {'operation': 'put', 'chunk_size': 25}

    def test_put_tag_rows_without_tags_writes_nothing(self, repository, mock_client):
        assert repository.put_tag_rows('b1#/a', [], expires_at=1) == 0
        mock_client.batch_write.assert_not_called()

    def test_put_path_row(self, repository, mock_client):
        repository.put_path_row('b1#/a?x=1', '/a', expires_at=5)

        mock_client.put_item.assert_called_once_with(
            table_name='paths', item={'pk': '/a', 'sk': 'b1#/a?x=1', 'expiresAt': 5}
        )

    def test_keys_for_tag_returns_sort_keys(self, repository, mock_client):
        mock_client.query.return_value = [{'pk': 'tag#posts', 'sk': 'b1#/a'}, {'pk': 'tag#posts', 'sk': 'b2#/b'}]

        assert repository.keys_for_tag('posts') == ['b1#/a', 'b2#/b']
        assert mock_client.query.call_args.kwargs['expression_attribute_values'] == {':pk': 'tag#posts'}

    def test_delete_tag_rows(self, repository, mock_client):
        repository.delete_tag_rows('posts', ['b1#/a'])

        mock_client.batch_write.assert_called_once_with(
            'tags', [{'pk': 'tag#posts', 'sk': 'b1#/a'}], operation='delete', chunk_size=25
        )

    def test_delete_index_rows_with_no_keys_is_noop(self, repository, mock_client):
        repository.delete_tag_rows('posts', [])
        repository.delete_path_rows('/a', [])
        mock_client.batch_write.assert_not_called()


class TestRegenerationLocksRepository:
    """Test suite for RegenerationLocksRepository."""

    def test_second_claim_is_rejected(self, aws_stores):
        locks = aws_stores['locks']

        assert locks.try_acquire('b1#/a', 'owner-1', ttl_seconds=30, now=1000) is True
        assert locks.try_acquire('b1#/a', 'owner-2', ttl_seconds=30, now=1010) is False

    def test_expired_lock_can_be_claimed(self, aws_stores):
        locks = aws_stores['locks']
        locks.try_acquire('b1#/a', 'owner-1', ttl_seconds=30, now=1000)

        assert locks.try_acquire('b1#/a', 'owner-2', ttl_seconds=30, now=1031) is True

    def test_release_by_owner_frees_lock(self, aws_stores):
        locks = aws_stores['locks']
        locks.try_acquire('b1#/a', 'owner-1', ttl_seconds=30, now=1000)

        assert locks.release('b1#/a', 'owner-1') is True
        assert locks.try_acquire('b1#/a', 'owner-2', ttl_seconds=30, now=1001) is True

    def test_release_by_other_owner_keeps_lock(self, aws_stores):
        locks = aws_stores['locks']
        locks.try_acquire('b1#/a', 'owner-1', ttl_seconds=30, now=1000)

        assert locks.release('b1#/a', 'owner-2') is False
        assert locks.try_acquire('b1#/a', 'owner-3', ttl_seconds=30, now=1001) is False

    def test_conditional_failure_maps_to_false(self):
        client = Mock(spec=DocumentStoreClient)
        client.put_item.side_effect = ConditionalCheckFailedError('held')
        locks = RegenerationLocksRepository('locks', client=client)

        assert locks.try_acquire('k', 'me', ttl_seconds=5) is False

"""
Unit tests for the Object Storage client.
"""
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, ConnectionClosedError

from yc_runtime.data_access.exceptions import ObjectNotFoundError, ObjectStoreError, RetryableError
from yc_runtime.data_access.object_storage_client import ObjectStorageClient

from conftest import TEST_BUCKET


class TestObjectStorageClient:
    """Test suite for ObjectStorageClient."""

    def test_put_and_get_object(self, aws_stores):
        # Arrange
        blob_store = aws_stores['blob_store']

        # Act
        blob_store.put_object('cache/b1/ab/abc', b'\x00\x01binary', content_type='image/png')
        body = blob_store.get_object('cache/b1/ab/abc')
        head = aws_stores['s3'].head_object(Bucket=TEST_BUCKET, Key='cache/b1/ab/abc')

        # Assert
        assert body == b'\x00\x01binary'
        assert head['ContentType'] == 'image/png'

    def test_get_missing_object_raises_not_found(self, aws_stores):
        with pytest.raises(ObjectNotFoundError):
            aws_stores['blob_store'].get_object('cache/b1/00/missing')

    def test_delete_missing_object_is_noop(self, aws_stores):
        aws_stores['blob_store'].delete_object('cache/b1/00/missing')

    def test_delete_removes_object(self, aws_stores):
        blob_store = aws_stores['blob_store']
        blob_store.put_object('k', b'v')

        blob_store.delete_object('k')

        with pytest.raises(ObjectNotFoundError):
            blob_store.get_object('k')

    def test_access_denied_becomes_object_store_error(self):
        s3 = Mock()
        s3.get_object.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'GetObject'
        )
        blob_store = ObjectStorageClient('bucket', s3_client=s3)

        with pytest.raises(ObjectStoreError) as exc_info:
            blob_store.get_object('k')
        assert not isinstance(exc_info.value, ObjectNotFoundError)

    def test_not_found_on_delete_is_swallowed(self):
        s3 = Mock()
        s3.delete_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'gone'}}, 'DeleteObject'
        )
        blob_store = ObjectStorageClient('bucket', s3_client=s3)

        blob_store.delete_object('k')

        s3.delete_object.assert_called_once_with(Bucket='bucket', Key='k')

    @patch('yc_runtime.data_access.retry.time.sleep')
    def test_dropped_connection_is_retried_then_raised(self, mock_sleep):
        s3 = Mock()
        s3.put_object.side_effect = ConnectionClosedError(endpoint_url='https://storage.yandexcloud.net')
        blob_store = ObjectStorageClient('bucket', s3_client=s3)

        with pytest.raises(RetryableError):
            blob_store.put_object('k', b'v')

        assert s3.put_object.call_count == 3
        assert mock_sleep.call_count == 2

"""
Unit tests for the Document API client.
"""
from unittest.mock import MagicMock, Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ParamValidationError

from yc_runtime.data_access.document_store_client import DocumentStoreClient, chunked
from yc_runtime.data_access.exceptions import (
    ConditionalCheckFailedError,
    DocumentStoreError,
    RetryableError,
)

from conftest import TAGS_TABLE, LOCKS_TABLE


def client_error(code, operation='PutItem'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


@pytest.fixture
def mock_table():
    return MagicMock()


@pytest.fixture
def client(mock_table):
    document_client = DocumentStoreClient(region='us-east-1')
    document_client.get_table = Mock(return_value=mock_table)
    return document_client


class TestErrorTranslation:
    """Test suite for ClientError translation."""

    def test_conditional_check_failure(self, client, mock_table):
        mock_table.put_item.side_effect = client_error('ConditionalCheckFailedException')

        with pytest.raises(ConditionalCheckFailedError):
            client.put_item('t', {'pk': 'a'}, condition_expression='attribute_not_exists(pk)')

    @patch('yc_runtime.data_access.retry.time.sleep')
    def test_throttling_is_retried_then_raised(self, mock_sleep, client, mock_table):
        mock_table.get_item.side_effect = client_error('ThrottlingException', 'GetItem')

        with pytest.raises(RetryableError):
            client.get_item('t', {'pk': 'a'})

        # Initial attempt plus two retries
        assert mock_table.get_item.call_count == 3
        assert mock_sleep.call_count == 2

    @patch('yc_runtime.data_access.retry.time.sleep')
    def test_transient_error_recovers(self, mock_sleep, client, mock_table):
        mock_table.get_item.side_effect = [
            client_error('InternalServerError', 'GetItem'),
            {'Item': {'pk': 'a'}},
        ]

        assert client.get_item('t', {'pk': 'a'}) == {'pk': 'a'}
        assert mock_sleep.call_count == 1

    @patch('yc_runtime.data_access.retry.time.sleep')
    def test_connection_errors_are_retried_then_raised(self, mock_sleep, client, mock_table):
        mock_table.put_item.side_effect = EndpointConnectionError(endpoint_url='https://docapi.example')

        with pytest.raises(RetryableError):
            client.put_item('t', {'pk': 'a'})

        assert mock_table.put_item.call_count == 3

    def test_other_botocore_errors_become_document_store_error(self, client, mock_table):
        mock_table.query.side_effect = ParamValidationError(report='Invalid type for parameter')

        with pytest.raises(DocumentStoreError) as exc_info:
            client.query('t', 'pk = :pk', {':pk': 'a'})
        assert not isinstance(exc_info.value, RetryableError)
        assert mock_table.query.call_count == 1

    def test_other_errors_become_document_store_error(self, client, mock_table):
        mock_table.query.side_effect = client_error('ResourceNotFoundException', 'Query')

        with pytest.raises(DocumentStoreError) as exc_info:
            client.query('t', 'pk = :pk', {':pk': 'a'})
        assert not isinstance(exc_info.value, RetryableError)

    def test_delete_passes_condition_and_names(self, client, mock_table):
        client.delete_item(
            't',
            {'pk': 'a'},
            condition_expression='#owner = :owner',
            expression_attribute_values={':owner': 'me'},
            expression_attribute_names={'#owner': 'owner'}
        )

        mock_table.delete_item.assert_called_once_with(
            Key={'pk': 'a'},
            ConditionExpression='#owner = :owner',
            ExpressionAttributeValues={':owner': 'me'},
            ExpressionAttributeNames={'#owner': 'owner'}
        )


class TestQuery:
    """Test suite for paginated queries."""

    def test_query_follows_pagination(self, client, mock_table):
        mock_table.query.side_effect = [
            {'Items': [{'sk': '1'}], 'LastEvaluatedKey': {'pk': 'a', 'sk': '1'}},
            {'Items': [{'sk': '2'}]},
        ]

        items = client.query('t', 'pk = :pk', {':pk': 'a'})

        assert items == [{'sk': '1'}, {'sk': '2'}]
        second_call = mock_table.query.call_args_list[1]
        assert second_call.kwargs['ExclusiveStartKey'] == {'pk': 'a', 'sk': '1'}


class TestBatchWrite:
    """Test suite for chunked batch writes."""

    def test_chunked_splits_in_order(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 25)) == []

    def test_invalid_operation_rejected(self, client):
        with pytest.raises(ValueError):
            client.batch_write('t', [{'pk': 'a'}], operation='update')

    def test_invalid_chunk_size_rejected(self, client):
        with pytest.raises(ValueError):
            client.batch_write('t', [{'pk': 'a'}], chunk_size=0)

    def test_batch_write_against_table(self, aws_stores):
        # Arrange
        document_client = aws_stores['document_client']
        rows = [{'pk': 'tag#big', 'sk': f'b1#/page/{i}'} for i in range(60)]

        # Act
        chunks = document_client.batch_write(TAGS_TABLE, rows, operation='put', chunk_size=25)
        stored = document_client.query(TAGS_TABLE, 'pk = :pk', {':pk': 'tag#big'})
        document_client.batch_write(TAGS_TABLE, rows, operation='delete', chunk_size=25)
        remaining = document_client.query(TAGS_TABLE, 'pk = :pk', {':pk': 'tag#big'})

        # Assert
        assert chunks == 3
        assert len(stored) == 60
        assert remaining == []

    def test_conditional_put_against_table(self, aws_stores):
        document_client = aws_stores['document_client']
        document_client.put_item(LOCKS_TABLE, {'pk': 'lock'})

        with pytest.raises(ConditionalCheckFailedError):
            document_client.put_item(
                LOCKS_TABLE,
                {'pk': 'lock'},
                condition_expression='attribute_not_exists(pk)'
            )

"""
Pytest configuration and fixtures.
"""
import importlib.util
import os
import sys

import boto3
import pytest
from moto import mock_aws

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
LAMBDA_DIR = os.path.join(ROOT_DIR, 'lambda')

# Make the package importable without installing it
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from yc_runtime.data_access.cache_metadata_repository import CacheMetadataRepository  # noqa: E402
from yc_runtime.data_access.document_store_client import DocumentStoreClient  # noqa: E402
from yc_runtime.data_access.object_storage_client import ObjectStorageClient  # noqa: E402
from yc_runtime.data_access.regeneration_locks_repository import RegenerationLocksRepository  # noqa: E402

TEST_REGION = 'us-east-1'
TEST_BUCKET = 'isr-cache-test'
ENTRIES_TABLE = 'isr_entries_test'
TAGS_TABLE = 'isr_tags_test'
PATHS_TABLE = 'isr_paths_test'
LOCKS_TABLE = 'isr_locks_test'


def _load_handler(name):
    """Import lambda/<name>/handler.py under a unique module name."""
    path = os.path.join(LAMBDA_DIR, name, 'handler.py')
    spec = importlib.util.spec_from_file_location(f'{name}_module', path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Mock credentials so no test ever reaches a real endpoint."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', TEST_REGION)


@pytest.fixture
def aws_stores():
    """Create the bucket and the four ISR tables in moto."""
    with mock_aws():
        s3 = boto3.client('s3', region_name=TEST_REGION)
        s3.create_bucket(Bucket=TEST_BUCKET)

        document_client = DocumentStoreClient(region=TEST_REGION)
        for table_name in (ENTRIES_TABLE, TAGS_TABLE, PATHS_TABLE):
            document_client.dynamodb.create_table(
                TableName=table_name,
                KeySchema=[
                    {'AttributeName': 'pk', 'KeyType': 'HASH'},
                    {'AttributeName': 'sk', 'KeyType': 'RANGE'}
                ],
                AttributeDefinitions=[
                    {'AttributeName': 'pk', 'AttributeType': 'S'},
                    {'AttributeName': 'sk', 'AttributeType': 'S'}
                ],
                BillingMode='PAY_PER_REQUEST'
            )
        document_client.dynamodb.create_table(
            TableName=LOCKS_TABLE,
            KeySchema=[{'AttributeName': 'pk', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'pk', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )

        yield {
            's3': s3,
            'document_client': document_client,
            'blob_store': ObjectStorageClient(TEST_BUCKET, region=TEST_REGION, s3_client=s3),
            'metadata': CacheMetadataRepository(
                ENTRIES_TABLE, TAGS_TABLE, PATHS_TABLE, client=document_client
            ),
            'locks': RegenerationLocksRepository(LOCKS_TABLE, client=document_client),
        }


@pytest.fixture
def gateway_event():
    """Build an API Gateway (payload 2.0) event."""
    def _event(path='/', method='GET', query='', headers=None, body=None, cookies=None):
        event = {
            'version': '2.0',
            'rawPath': path,
            'rawQueryString': query,
            'headers': {'host': 'example.com', **(headers or {})},
            'requestContext': {
                'requestId': 'req-123',
                'domainName': 'example.com',
                'http': {'method': method, 'path': path, 'sourceIp': '203.0.113.10'}
            },
            'isBase64Encoded': False,
        }
        if body is not None:
            event['body'] = body
        if cookies is not None:
            event['cookies'] = cookies
        return event
    return _event


@pytest.fixture
def load_handler():
    """Loader for function handlers (``lambda`` is not an importable name)."""
    return _load_handler

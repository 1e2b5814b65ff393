"""
Unit tests for the function handlers.
"""
import json
from unittest.mock import AsyncMock, Mock

import pytest


@pytest.fixture
def server_handler(load_handler, monkeypatch):
    module = load_handler('server_handler')
    pipeline = Mock()
    pipeline.handle = AsyncMock(return_value={'statusCode': 200, 'headers': {}, 'body': 'ok'})
    scheduler = Mock()
    scheduler.drain = AsyncMock()
    monkeypatch.setattr(module, '_pipeline', pipeline)
    monkeypatch.setattr(module, '_scheduler', scheduler)
    monkeypatch.setattr(module, '_metrics', Mock())
    return module


@pytest.fixture
def revalidate_handler(load_handler, monkeypatch):
    module = load_handler('revalidate_handler')
    service = Mock()
    service.handle = AsyncMock(return_value={'statusCode': 200, 'headers': {}, 'body': '{}'})
    monkeypatch.setattr(module, '_service', service)
    monkeypatch.setattr(module, '_metrics', Mock())
    return module


@pytest.fixture
def image_handler(load_handler, monkeypatch):
    module = load_handler('image_handler')
    optimizer = Mock()
    optimizer.handle.return_value = {'statusCode': 200, 'headers': {}, 'body': '', 'isBase64Encoded': True}
    monkeypatch.setattr(module, '_optimizer', optimizer)
    monkeypatch.setattr(module, '_metrics', Mock())
    return module


class TestServerHandler:
    """Test suite for the server function handler."""

    def test_handles_event_and_drains_regenerations(self, server_handler, gateway_event):
        event = gateway_event('/')

        response = server_handler.lambda_handler(event, None)

        assert response['statusCode'] == 200
        server_handler._pipeline.handle.assert_awaited_once_with(event)
        server_handler._scheduler.drain.assert_awaited_once()
        server_handler._metrics.flush.assert_called_once()

    def test_pipeline_error_returns_500_after_draining(self, server_handler, gateway_event):
        server_handler._pipeline.handle.side_effect = RuntimeError('boom')

        response = server_handler.lambda_handler(gateway_event('/'), None)

        assert response['statusCode'] == 500
        assert json.loads(response['body'])['error'] == 'INTERNAL_ERROR'
        server_handler._scheduler.drain.assert_awaited_once()

    def test_initialization_failure_returns_500(self, server_handler, monkeypatch, gateway_event):
        monkeypatch.setattr(server_handler, '_pipeline', None)
        monkeypatch.setattr(server_handler, '_initialize', Mock(side_effect=ValueError('bad manifest')))

        response = server_handler.lambda_handler(gateway_event('/'), None)

        assert response['statusCode'] == 500

    def test_initialize_wires_regenerator(self, load_handler, monkeypatch, tmp_path):
        # Arrange
        module = load_handler('server_handler')
        monkeypatch.setenv('PROJECT_ROOT', str(tmp_path))
        monkeypatch.setenv('CACHE_BUCKET', 'bucket')
        monkeypatch.setenv('BUILD_ID', 'b1')

        # Act
        module._initialize()

        # Assert
        assert module._pipeline.cache is not None
        assert module._pipeline.middleware_runner.middleware is None
        assert module._scheduler._regenerate == module._pipeline.regenerate


class TestRevalidateHandler:
    """Test suite for the revalidation function handler."""

    def test_post_is_delegated(self, revalidate_handler, gateway_event):
        response = revalidate_handler.lambda_handler(gateway_event('/api/__revalidate', method='POST'), None)

        assert response['statusCode'] == 200
        revalidate_handler._metrics.flush.assert_called_once()

    def test_other_methods_rejected(self, revalidate_handler, gateway_event):
        response = revalidate_handler.lambda_handler(gateway_event('/api/__revalidate', method='GET'), None)

        assert response['statusCode'] == 405
        assert json.loads(response['body'])['error'] == 'METHOD_NOT_ALLOWED'
        revalidate_handler._service.handle.assert_not_awaited()

    def test_missing_bucket_returns_500(self, load_handler, monkeypatch, tmp_path, gateway_event):
        module = load_handler('revalidate_handler')
        monkeypatch.setenv('PROJECT_ROOT', str(tmp_path))
        monkeypatch.delenv('CACHE_BUCKET', raising=False)

        response = module.lambda_handler(gateway_event('/api/__revalidate', method='POST'), None)

        assert response['statusCode'] == 500
        assert json.loads(response['body'])['error'] == 'REVALIDATION_FAILED'


class TestImageHandler:
    """Test suite for the image function handler."""

    def test_get_is_delegated(self, image_handler, gateway_event):
        event = gateway_event('/_next/image', query='url=%2Flogo.png&w=64')

        response = image_handler.lambda_handler(event, None)

        assert response['statusCode'] == 200
        image_handler._optimizer.handle.assert_called_once_with(event)
        image_handler._metrics.flush.assert_called_once()

    def test_post_rejected(self, image_handler, gateway_event):
        response = image_handler.lambda_handler(gateway_event('/_next/image', method='POST'), None)

        assert response['statusCode'] == 405
        assert json.loads(response['body'])['error'] == 'METHOD_NOT_ALLOWED'
        image_handler._optimizer.handle.assert_not_called()

    def test_unexpected_error_returns_500(self, image_handler, gateway_event):
        image_handler._optimizer.handle.side_effect = RuntimeError('encoder crashed')

        response = image_handler.lambda_handler(gateway_event('/_next/image', query='url=%2Fa.png'), None)

        assert response['statusCode'] == 500
        assert json.loads(response['body'])['error'] == 'IMAGE_OPTIMIZATION_FAILED'

    def test_initialize_reads_image_settings(self, load_handler, monkeypatch, tmp_path):
        # Arrange
        module = load_handler('image_handler')
        monkeypatch.setenv('PROJECT_ROOT', str(tmp_path))
        monkeypatch.setenv('IMAGE_CACHE_BUCKET', 'images-bucket')
        monkeypatch.setenv('IMAGE_ALLOWED_HOSTS', 'cdn.example.com, images.example.com')
        monkeypatch.setenv('IMAGE_QUALITY', '60')

        # Act
        module._initialize()

        # Assert
        assert module._optimizer.cache_store.bucket == 'images-bucket'
        assert module._optimizer.sources_store is None
        assert module._optimizer.allowed_hosts == frozenset(['cdn.example.com', 'images.example.com'])
        assert module._optimizer.quality == 60

"""
Unit tests for middleware loading.
"""
import json
import os
from unittest.mock import AsyncMock, Mock

import pytest

from yc_runtime.services.edge_environment import EdgeRequest
from yc_runtime.services.middleware_loader import (
    compile_matchers,
    load_middleware,
    read_middleware_manifest,
    translate_js_regexp,
)
from yc_runtime.services.node_sandbox import NATIVE, NodeSandbox


@pytest.fixture
def project_root(tmp_path):
    server_dir = tmp_path / '.next' / 'server'
    server_dir.mkdir(parents=True)
    (server_dir / 'middleware.js').write_text('module.exports.middleware = () => undefined;')
    (server_dir / 'edge-runtime-webpack.js').write_text('')
    return tmp_path


def middleware_manifest(**entry):
    base = {'name': 'middleware', 'page': '/', 'matchers': [{'regexp': '^/dashboard(?:/.*)?$'}]}
    base.update(entry)
    return {'version': 2, 'middleware': {'/': base}}


class TestMatchers:
    """Test suite for matcher compilation."""

    def test_named_groups_translated(self):
        assert translate_js_regexp('^/blog/(?<slug>[^/]+)$') == '^/blog/(?P<slug>[^/]+)$'

    def test_lookbehind_untouched(self):
        assert translate_js_regexp('(?<=a)b(?<!c)') == '(?<=a)b(?<!c)'

    def test_invalid_matcher_skipped(self):
        matchers = compile_matchers([{'regexp': '^/ok$'}, {'regexp': '(unclosed'}, {}])

        assert len(matchers) == 1
        assert matchers[0].pattern == '^/ok$'


class TestLoadMiddleware:
    """Test suite for load_middleware."""

    def test_no_manifest_means_no_middleware(self, project_root):
        assert load_middleware(None, str(project_root), NodeSandbox()) is None
        assert load_middleware({'middleware': {}}, str(project_root), NodeSandbox()) is None

    def test_default_file_location(self, project_root):
        middleware = load_middleware(middleware_manifest(), str(project_root), NodeSandbox())

        assert middleware.name == 'middleware'
        assert middleware.files == (os.path.join(str(project_root), '.next', 'server', 'middleware.js'),)
        assert middleware.matches('/dashboard/settings') is True
        assert middleware.matches('/about') is False

    def test_listed_files_resolved_relative_to_next_dir(self, project_root):
        manifest = middleware_manifest(files=['server/edge-runtime-webpack.js', 'server/middleware.js'])

        middleware = load_middleware(manifest, str(project_root), NodeSandbox())

        assert [os.path.basename(f) for f in middleware.files] == ['edge-runtime-webpack.js', 'middleware.js']

    def test_missing_file_yields_none(self, project_root):
        manifest = middleware_manifest(files=['server/src/middleware.js'])

        assert load_middleware(manifest, str(project_root), NodeSandbox()) is None

    def test_no_matchers_match_everything(self, project_root):
        middleware = load_middleware(middleware_manifest(matchers=[]), str(project_root), NodeSandbox())

        assert middleware.matches('/anything') is True

    def test_read_middleware_manifest(self, project_root):
        assert read_middleware_manifest(str(project_root)) is None

        path = project_root / '.next' / 'server' / 'middleware-manifest.json'
        path.write_text(json.dumps(middleware_manifest()))

        assert read_middleware_manifest(str(project_root))['version'] == 2

    @pytest.mark.asyncio
    async def test_execute_delegates_to_sandbox(self, project_root):
        sandbox = Mock(spec=NodeSandbox)
        sandbox.run = AsyncMock(return_value=None)
        middleware = load_middleware(middleware_manifest(), str(project_root), sandbox)
        request = EdgeRequest(url='https://example.com/dashboard')

        await middleware.execute(request, NATIVE)

        sandbox.run.assert_awaited_once_with(
            middleware.files, 'middleware', request.to_payload(), NATIVE
        )

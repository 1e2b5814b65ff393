"""
Loading of compiled Next.js middleware.

Loading is a pure step: it resolves the compiled files and compiles the
route matchers. Execution is delegated to the NodeSandbox.
"""

import json
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern, Tuple

from ..utils.structured_logger import get_structured_logger
from .edge_environment import EdgeRequest
from .node_sandbox import ISOLATED, MiddlewareResponse, NodeSandbox

logger = get_structured_logger('MiddlewareLoader')

MIDDLEWARE_MANIFEST_PATH = os.path.join('.next', 'server', 'middleware-manifest.json')

_NAMED_GROUP = re.compile(r'\(\?<(?![=!])')


def translate_js_regexp(source: str) -> str:
    """
    Translate JavaScript regexp syntax to Python ``re`` syntax.

    Example:
        >>> translate_js_regexp('^/blog/(?<slug>[^/]+)$')
        '^/blog/(?P<slug>[^/]+)$'
    """
    return _NAMED_GROUP.sub('(?P<', source)


def compile_matchers(matchers: List[Dict[str, Any]]) -> Tuple[Pattern, ...]:
    """
    Compile manifest matchers; a matcher that fails to compile is skipped.
    """
    compiled = []
    for matcher in matchers or []:
        source = matcher.get('regexp') if isinstance(matcher, dict) else matcher
        if not source:
            continue
        try:
            compiled.append(re.compile(translate_js_regexp(source)))
        except re.error as e:
            logger.warning('Skipping matcher that does not compile', operation='compile', regexp=source, error_message=str(e))
    return tuple(compiled)


@dataclass(frozen=True)
class CompiledMiddleware:
    """
    A middleware artifact ready to run.

    Attributes:
        name: Entry name (e.g. 'middleware')
        files: Absolute paths of the compiled files, in load order
        matchers: Compiled route matchers; empty matches every path
        sandbox: Executor for the files
    """
    name: str
    files: Tuple[str, ...]
    matchers: Tuple[Pattern, ...]
    sandbox: NodeSandbox

    def matches(self, pathname: str) -> bool:
        if not self.matchers:
            return True
        return any(matcher.search(pathname) for matcher in self.matchers)

    async def execute(self, request: EdgeRequest, mode: str = ISOLATED) -> Optional[MiddlewareResponse]:
        """Run the middleware against ``request``."""
        return await self.sandbox.run(self.files, self.name, request.to_payload(), mode)


def read_middleware_manifest(project_root: str) -> Optional[Dict[str, Any]]:
    """Read ``.next/server/middleware-manifest.json`` if the build has one."""
    path = os.path.join(project_root, MIDDLEWARE_MANIFEST_PATH)
    if not os.path.exists(path):
        return None
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_middleware(
    manifest: Optional[Dict[str, Any]],
    project_root: str,
    sandbox: NodeSandbox
) -> Optional[CompiledMiddleware]:
    """
    Resolve the first middleware entry of a middleware manifest.

    Entries listing ``files`` load those (relative to ``.next``); otherwise
    ``.next/server/{name}.js`` is used.

    Args:
        manifest: Parsed middleware manifest, or None
        project_root: Directory holding the ``.next`` build output
        sandbox: Executor for the compiled files

    Returns:
        CompiledMiddleware, or None if there is no usable artifact
    """
    entries = list(((manifest or {}).get('middleware') or {}).values())
    if not entries:
        return None
    entry = entries[0]
    name = entry.get('name') or 'middleware'
    next_dir = os.path.join(project_root, '.next')

    if entry.get('files'):
        files = tuple(os.path.join(next_dir, f) for f in entry['files'])
    else:
        files = (os.path.join(next_dir, 'server', f'{name}.js'),)

    missing = [f for f in files if not os.path.exists(f)]
    if missing:
        logger.warning('Middleware file not found', operation='load', files=missing)
        return None

    return CompiledMiddleware(
        name=name,
        files=files,
        matchers=compile_matchers(entry.get('matchers') or []),
        sandbox=sandbox,
    )

"""
Node.js execution of compiled middleware.

Middleware runs in a child ``node`` process driven by the packaged
``edge_runtime.js`` bootstrap. In isolated mode the bootstrap evaluates the
middleware in a fresh VM context exposing only an allow-listed edge global
surface; in native mode it ``require``s the files directly.
"""

import asyncio
import base64
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import MiddlewareExecutionError, MiddlewareTimeoutError
from ..utils.structured_logger import get_structured_logger

EDGE_RUNTIME_SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'edge_runtime.js')

ISOLATED = 'isolated'
NATIVE = 'native'


@dataclass
class MiddlewareResponse:
    """Response returned by middleware code."""
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[str] = field(default_factory=list)
    body: Optional[bytes] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'MiddlewareResponse':
        body = payload.get('body')
        return cls(
            status=int(payload.get('status', 200)),
            headers={str(k).lower(): str(v) for k, v in (payload.get('headers') or {}).items()},
            cookies=[str(c) for c in payload.get('cookies') or []],
            body=base64.b64decode(body) if body else None,
        )


class NodeSandbox:
    """
    Runs middleware files through the edge runtime bootstrap.
    """

    def __init__(
        self,
        node_binary: str = 'node',
        timeout_seconds: float = 5.0,
        script_path: str = EDGE_RUNTIME_SCRIPT
    ):
        """
        Initialize sandbox.

        Args:
            node_binary: Node.js executable
            timeout_seconds: Wall-clock limit for one middleware run
            script_path: Bootstrap script
        """
        self.node_binary = node_binary
        self.timeout_seconds = timeout_seconds
        self.script_path = script_path
        self.logger = get_structured_logger('NodeSandbox')

    async def run(
        self,
        files: Sequence[str],
        entry_name: str,
        request: Dict[str, Any],
        mode: str = ISOLATED
    ) -> Optional[MiddlewareResponse]:
        """
        Execute middleware once.

        Args:
            files: Absolute paths of the compiled files, in load order
            entry_name: Middleware entry name from the manifest
            request: Serialized EdgeRequest
            mode: 'isolated' or 'native'

        Returns:
            MiddlewareResponse, or None when the middleware returned nothing

        Raises:
            MiddlewareTimeoutError: If the run exceeds the timeout
            MiddlewareExecutionError: If the middleware threw or the runtime failed
        """
        payload = json.dumps({
            'mode': mode,
            'files': list(files),
            'entryName': entry_name,
            'request': request,
        }).encode('utf-8')

        try:
            process = await asyncio.create_subprocess_exec(
                self.node_binary,
                self.script_path,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise MiddlewareExecutionError(
                f'Failed to start {self.node_binary}: {e}',
                error_name='SpawnError'
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(payload), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise MiddlewareTimeoutError(self.timeout_seconds)

        self._relay_console(stderr, entry_name)

        try:
            result = json.loads(stdout.decode('utf-8'))
        except ValueError as e:
            raise MiddlewareExecutionError(
                f'Edge runtime produced no result (exit code {process.returncode})',
                error_name='RuntimeError'
            ) from e

        error = result.get('error')
        if error:
            raise MiddlewareExecutionError(
                error.get('message', ''),
                error_name=error.get('name', 'Error'),
                error_code=error.get('code')
            )

        response = result.get('response')
        if response is None:
            return None
        return MiddlewareResponse.from_payload(response)

    def _relay_console(self, stderr: bytes, entry_name: str) -> None:
        for line in stderr.decode('utf-8', errors='replace').splitlines():
            if line.strip():
                self.logger.info(line, operation='middleware_console', entry=entry_name)

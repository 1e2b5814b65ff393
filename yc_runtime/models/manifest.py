"""
Deployment manifest model.

The manifest is produced by the build step and shipped with the server
function; the runtime reads the capabilities (middleware mode, ISR features)
and the ISR storage layout from it.
"""
import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import ManifestValidationError

SCHEMA_VERSION = '1.0'
MIDDLEWARE_MODES = ('edge-emulated', 'node-fallback', 'none')
REVALIDATE_AUTH_MODES = ('hmac', 'ip-whitelist', 'both')
DEFAULT_REVALIDATE_ENDPOINT = '/api/__revalidate'


def _require(data: Dict[str, Any], name: str, kind: type, path: str) -> Any:
    if name not in data:
        raise ManifestValidationError(f"Missing required field: {path}{name}", field=f"{path}{name}")
    value = data[name]
    if not isinstance(value, kind):
        raise ManifestValidationError(
            f"Field {path}{name} must be {kind.__name__}, got {type(value).__name__}",
            field=f"{path}{name}"
        )
    return value


@dataclass
class ISRCapabilities:
    enabled: bool = False
    onDemand: bool = False
    tags: bool = False
    paths: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ISRCapabilities':
        path = 'capabilities.isr.'
        return cls(
            enabled=_require(data, 'enabled', bool, path),
            onDemand=_require(data, 'onDemand', bool, path),
            tags=_require(data, 'tags', bool, path),
            paths=_require(data, 'paths', bool, path),
        )


@dataclass
class MiddlewareCapabilities:
    enabled: bool = False
    mode: str = 'none'

    def __post_init__(self):
        if self.mode not in MIDDLEWARE_MODES:
            raise ManifestValidationError(
                f"Invalid middleware mode: {self.mode}",
                field='capabilities.middleware.mode'
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MiddlewareCapabilities':
        path = 'capabilities.middleware.'
        return cls(
            enabled=_require(data, 'enabled', bool, path),
            mode=_require(data, 'mode', str, path),
        )


@dataclass
class Capabilities:
    """
    Features detected in the Next.js build.

    Attributes:
        nextVersion: Next.js version string
        appRouter: App Router in use
        pagesRouter: Pages Router in use
        needsServer: Build has server-rendered routes
        needsImage: Build uses the image optimizer
        isr: ISR feature flags
        middleware: Middleware presence and execution mode
        notes: Free-form analyzer notes
    """
    nextVersion: str
    appRouter: bool = False
    pagesRouter: bool = False
    needsServer: bool = False
    needsImage: bool = False
    isr: ISRCapabilities = field(default_factory=ISRCapabilities)
    middleware: MiddlewareCapabilities = field(default_factory=MiddlewareCapabilities)
    notes: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Capabilities':
        """
        Create Capabilities from dictionary.

        Raises:
            ManifestValidationError: If a field is missing or mistyped
        """
        path = 'capabilities.'
        notes = _require(data, 'notes', list, path)
        return cls(
            nextVersion=_require(data, 'nextVersion', str, path),
            appRouter=_require(data, 'appRouter', bool, path),
            pagesRouter=_require(data, 'pagesRouter', bool, path),
            needsServer=_require(data, 'needsServer', bool, path),
            needsImage=_require(data, 'needsImage', bool, path),
            isr=ISRCapabilities.from_dict(_require(data, 'isr', dict, path)),
            middleware=MiddlewareCapabilities.from_dict(_require(data, 'middleware', dict, path)),
            notes=[str(note) for note in notes],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ISRTables:
    entries: str = 'isr_entries'
    tags: str = 'isr_tags'
    paths: str = 'isr_paths'
    locks: str = 'isr_locks'


@dataclass
class ISRConfig:
    """ISR storage layout and revalidation endpoint settings."""
    bucketPrefix: str
    tables: ISRTables = field(default_factory=ISRTables)
    docapiEndpoint: Optional[str] = None
    endpointPath: str = DEFAULT_REVALIDATE_ENDPOINT
    auth: str = 'hmac'

    def __post_init__(self):
        if self.auth not in REVALIDATE_AUTH_MODES:
            raise ManifestValidationError(
                f"Invalid revalidation auth mode: {self.auth}",
                field='isr.revalidate.auth'
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ISRConfig':
        cache = _require(data, 'cache', dict, 'isr.')
        ydb = _require(data, 'ydb', dict, 'isr.')
        tables = _require(ydb, 'tables', dict, 'isr.ydb.')
        revalidate = _require(data, 'revalidate', dict, 'isr.')
        table_path = 'isr.ydb.tables.'
        return cls(
            bucketPrefix=_require(cache, 'bucketPrefix', str, 'isr.cache.'),
            tables=ISRTables(
                entries=_require(tables, 'entries', str, table_path),
                tags=_require(tables, 'tags', str, table_path),
                paths=_require(tables, 'paths', str, table_path),
                locks=_require(tables, 'locks', str, table_path),
            ),
            docapiEndpoint=ydb.get('docapiEndpoint'),
            endpointPath=_require(revalidate, 'endpointPath', str, 'isr.revalidate.'),
            auth=_require(revalidate, 'auth', str, 'isr.revalidate.'),
        )

    def to_dict(self) -> Dict[str, Any]:
        ydb: Dict[str, Any] = {'tables': asdict(self.tables)}
        if self.docapiEndpoint:
            ydb['docapiEndpoint'] = self.docapiEndpoint
        return {
            'cache': {'bucketPrefix': self.bucketPrefix},
            'ydb': ydb,
            'revalidate': {'endpointPath': self.endpointPath, 'auth': self.auth},
        }


@dataclass
class DeployManifest:
    """
    Deployment manifest consumed by the runtime.

    Routing, artifact and deployment sections are kept as plain dicts; the
    runtime only passes them through.
    """
    buildId: str
    nextVersion: str
    capabilities: Capabilities
    timestamp: str = ''
    schemaVersion: str = SCHEMA_VERSION
    isr: Optional[ISRConfig] = None
    routing: Dict[str, Any] = field(default_factory=dict)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    environment: Dict[str, Any] = field(default_factory=dict)
    deployment: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.schemaVersion != SCHEMA_VERSION:
            raise ManifestValidationError(
                f"Unsupported schema version: {self.schemaVersion}",
                field='schemaVersion'
            )
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')

    @property
    def middleware_mode(self) -> str:
        """Effective middleware mode; 'none' when middleware is disabled."""
        if not self.capabilities.middleware.enabled:
            return 'none'
        return self.capabilities.middleware.mode

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeployManifest':
        """
        Create DeployManifest from a parsed manifest document.

        Args:
            data: Manifest dictionary

        Returns:
            DeployManifest instance

        Raises:
            ManifestValidationError: If the document does not match the schema
        """
        if not isinstance(data, dict):
            raise ManifestValidationError("Manifest must be a JSON object")

        isr_data = data.get('isr')
        return cls(
            schemaVersion=_require(data, 'schemaVersion', str, ''),
            buildId=_require(data, 'buildId', str, ''),
            timestamp=data.get('timestamp', ''),
            nextVersion=_require(data, 'nextVersion', str, ''),
            capabilities=Capabilities.from_dict(_require(data, 'capabilities', dict, '')),
            isr=ISRConfig.from_dict(isr_data) if isr_data else None,
            routing=data.get('routing') or {},
            artifacts=data.get('artifacts') or {},
            environment=data.get('environment') or {},
            deployment=data.get('deployment') or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'schemaVersion': self.schemaVersion,
            'buildId': self.buildId,
            'timestamp': self.timestamp,
            'nextVersion': self.nextVersion,
            'capabilities': self.capabilities.to_dict(),
            'routing': self.routing,
            'artifacts': self.artifacts,
            'environment': self.environment,
            'deployment': self.deployment,
        }
        if self.isr is not None:
            data['isr'] = self.isr.to_dict()
        return data


def load_manifest(path: str) -> DeployManifest:
    """
    Read and validate a manifest file.

    Args:
        path: Path to deploy.manifest.json

    Raises:
        ManifestValidationError: If the file is not valid JSON or fails validation
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestValidationError(f"Manifest is not valid JSON: {e}") from e
    return DeployManifest.from_dict(data)


def create_default_manifest(
    build_id: str,
    next_version: str,
    capabilities: Capabilities
) -> DeployManifest:
    """
    Build a manifest with the builder's default layout for the given build.

    ISR configuration is only present when ISR is enabled; image function
    settings only when the image optimizer is needed.
    """
    needs_image = capabilities.needsImage
    server_function = {'memory': 512, 'timeout': 30, 'preparedInstances': 0}
    functions: Dict[str, Any] = {'server': server_function}
    artifacts: Dict[str, Any] = {
        'assets': {
            'localDir': './artifacts/assets',
            'bucketKeyPrefix': f'assets/{build_id}',
        },
        'server': {
            'zipPath': './artifacts/server.zip',
            'entry': 'index.handler',
            'env': {'NODE_ENV': 'production'},
        },
    }
    if needs_image:
        artifacts['image'] = {
            'zipPath': './artifacts/image.zip',
            'entry': 'image.handler',
            'env': {'NODE_ENV': 'production'},
        }
        functions['image'] = {'memory': 256, 'timeout': 30, 'preparedInstances': 0}

    return DeployManifest(
        buildId=build_id,
        nextVersion=next_version,
        capabilities=capabilities,
        isr=ISRConfig(bucketPrefix=f'cache/{build_id}') if capabilities.isr.enabled else None,
        routing={
            'payloadFormat': '2.0',
            'staticPaths': ['/_next/static/*', '/public/*'],
        },
        artifacts=artifacts,
        environment={'variables': {}, 'secrets': []},
        deployment={'region': 'ru-central1', 'functions': functions},
    )

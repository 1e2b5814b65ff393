"""
Next.js compatibility matrix checks.

The matrix in ``config/compat.yml`` is loaded once per process into an
immutable structure and consulted to validate detected capabilities and to
choose the middleware execution mode.
"""

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from ..models.manifest import Capabilities

COMPAT_MATRIX_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'config', 'compat.yml'
)

FEATURE_STATUSES = ('supported', 'partial', 'experimental', 'unsupported')


@dataclass(frozen=True)
class FeatureStatus:
    status: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class VersionFeatures:
    range: str
    specifier: SpecifierSet
    features: Mapping[str, FeatureStatus]


@dataclass(frozen=True)
class CompatMatrix:
    versions: Tuple[VersionFeatures, ...]
    edge_runtime_differences: Tuple[Mapping[str, str], ...] = ()
    yc_limitations: Tuple[Mapping[str, str], ...] = ()


@dataclass
class CompatibilityReport:
    compatible: bool
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


def parse_matrix(data: Dict[str, Any]) -> CompatMatrix:
    """
    Build an immutable matrix from the parsed YAML document.

    Raises:
        ValueError: On an unknown feature status or invalid range
    """
    versions = []
    for entry in data.get('versions') or []:
        features = {}
        for name, raw in (entry.get('features') or {}).items():
            status = raw.get('status')
            if status not in FEATURE_STATUSES:
                raise ValueError(f"Unknown status {status!r} for feature {name} in {entry.get('range')}")
            features[name] = FeatureStatus(status=status, notes=raw.get('notes'))
        try:
            specifier = SpecifierSet(entry['range'])
        except InvalidSpecifier as e:
            raise ValueError(f"Invalid version range {entry.get('range')!r}") from e
        versions.append(VersionFeatures(
            range=entry['range'],
            specifier=specifier,
            features=MappingProxyType(features),
        ))
    return CompatMatrix(
        versions=tuple(versions),
        edge_runtime_differences=tuple(
            MappingProxyType(dict(d)) for d in data.get('edgeRuntimeDifferences') or []
        ),
        yc_limitations=tuple(MappingProxyType(dict(d)) for d in data.get('ycLimitations') or []),
    )


@lru_cache(maxsize=None)
def load_matrix(path: str = COMPAT_MATRIX_PATH) -> CompatMatrix:
    """Load and cache the compatibility matrix."""
    with open(path, 'r', encoding='utf-8') as f:
        return parse_matrix(yaml.safe_load(f) or {})


def parse_next_version(version: str) -> Optional[Version]:
    """
    Parse a Next.js version, ignoring prerelease suffixes.

    Example:
        >>> parse_next_version('14.1.1-canary.5')
        <Version('14.1.1')>
    """
    if not version:
        return None
    try:
        return Version(version.split('-', 1)[0])
    except InvalidVersion:
        return None


def detect_next_version(project_root: str) -> Optional[str]:
    """
    Next.js version declared in the build's ``package.json``.

    Reads ``dependencies.next`` then ``devDependencies.next`` and drops a
    leading ``^`` or ``~``. Returns None when the file or entry is missing.
    """
    path = os.path.join(project_root, 'package.json')
    try:
        with open(path, 'r', encoding='utf-8') as f:
            package = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(package, dict):
        return None
    for section in ('dependencies', 'devDependencies'):
        deps = package.get(section)
        if isinstance(deps, dict) and isinstance(deps.get('next'), str):
            return deps['next'].lstrip('^~').strip() or None
    return None


class CompatibilityChecker:
    """
    Answers feature-support questions for Next.js versions.

    Example:
        >>> checker = CompatibilityChecker()
        >>> checker.is_version_supported('14.2.3')
        True
    """

    def __init__(self, matrix: Optional[CompatMatrix] = None):
        self.matrix = matrix or load_matrix()

    def _version_entry(self, version: str) -> Optional[VersionFeatures]:
        parsed = parse_next_version(version)
        if parsed is None:
            return None
        for entry in self.matrix.versions:
            if parsed in entry.specifier:
                return entry
        return None

    def is_version_supported(self, version: str) -> bool:
        return self._version_entry(version) is not None

    def get_feature_compatibility(self, version: str, feature: str) -> Optional[FeatureStatus]:
        entry = self._version_entry(version)
        if entry is None:
            return None
        return entry.features.get(feature)

    def get_all_features(self, version: str) -> Optional[Mapping[str, FeatureStatus]]:
        entry = self._version_entry(version)
        return entry.features if entry else None

    def check_capabilities(
        self,
        next_version: str,
        app_router: bool = False,
        pages_router: bool = False,
        middleware: bool = False,
        server_actions: bool = False,
        isr: bool = False,
        revalidate_path: bool = False,
        revalidate_tag: bool = False
    ) -> CompatibilityReport:
        """
        Check enabled features against the matrix.

        Unsupported features are errors; partial, experimental and unknown
        features are warnings.
        """
        report = CompatibilityReport(compatible=True)

        if not self.is_version_supported(next_version):
            ranges = ', '.join(v.range for v in self.matrix.versions)
            report.errors.append(
                f"Next.js version {next_version} is not supported. Supported ranges: {ranges}"
            )
            report.compatible = False
            return report

        features = self.get_all_features(next_version) or {}
        checks = (
            (app_router, 'appRouter', 'App Router'),
            (pages_router, 'pagesRouter', 'Pages Router'),
            (middleware, 'middleware', 'Middleware'),
            (server_actions, 'serverActions', 'Server Actions'),
            (isr, 'isr', 'ISR'),
            (revalidate_path, 'revalidatePath', 'revalidatePath'),
            (revalidate_tag, 'revalidateTag', 'revalidateTag'),
        )
        for enabled, feature, name in checks:
            if not enabled:
                continue
            status = features.get(feature)
            if status is None:
                report.warnings.append(f"Feature '{name}' status unknown for Next.js {next_version}")
                continue
            suffix = f": {status.notes}" if status.notes else ''
            if status.status == 'unsupported':
                report.errors.append(f"Feature '{name}' is not supported in Next.js {next_version}")
            elif status.status == 'partial':
                report.warnings.append(f"Feature '{name}' has partial support in Next.js {next_version}{suffix}")
            elif status.status == 'experimental':
                report.warnings.append(f"Feature '{name}' is experimental in Next.js {next_version}{suffix}")

        if middleware:
            report.warnings.append(
                'Middleware will run in edge-emulated mode. '
                'See documentation for behavioral differences vs Vercel Edge Runtime.'
            )

        report.compatible = not report.errors
        return report

    def check_compatibility(self, capabilities: Capabilities) -> CompatibilityReport:
        """Check a full capabilities record, adding version- and mode-specific findings."""
        version = capabilities.nextVersion
        report = self.check_capabilities(
            version,
            app_router=capabilities.appRouter,
            pages_router=capabilities.pagesRouter,
            middleware=capabilities.middleware.enabled,
            isr=capabilities.isr.enabled,
        )

        parsed = parse_next_version(version)
        before_13 = parsed is not None and parsed < Version('13.0.0')

        if capabilities.appRouter and before_13:
            report.errors.append('App Router requires Next.js 13+')
        if capabilities.isr.tags and before_13:
            report.warnings.append('ISR tags require Next.js 13+')
        if capabilities.appRouter and capabilities.pagesRouter:
            report.notes.append('Using both App Router and Pages Router')
        if not capabilities.needsServer:
            report.notes.append('Static site - no server functions needed')
        if capabilities.middleware.enabled and capabilities.middleware.mode == 'node-fallback':
            report.warnings.append(
                'Middleware in node-fallback mode may have different behavior than edge runtime'
            )

        report.compatible = not report.errors
        return report

    def get_feature_support(self, version: str) -> Dict[str, bool]:
        """Simplified feature flags for a version."""
        features = self.get_all_features(version) or {}

        def supported(name: str) -> bool:
            status = features.get(name)
            return status is not None and status.status in ('supported', 'partial')

        def available(name: str) -> bool:
            status = features.get(name)
            return status is not None and status.status in ('supported', 'partial', 'experimental')

        parsed = parse_next_version(version)
        return {
            'appRouter': supported('appRouter'),
            'pagesRouter': supported('pagesRouter'),
            'isr': supported('isr'),
            'isrTags': supported('revalidateTag'),
            'middleware': supported('middleware'),
            'serverActions': available('serverActions'),
            'partialPrerendering': available('ppr'),
            'turbopack': parsed is not None and parsed >= Version('15.0.0'),
        }

    def resolve_middleware_mode(self, version: str, has_middleware: bool) -> str:
        """
        Choose how middleware runs for a build.

        Edge emulation where the matrix supports middleware for the version,
        native execution otherwise.
        """
        if not has_middleware:
            return 'none'
        if self.get_feature_support(version)['middleware']:
            return 'edge-emulated'
        return 'node-fallback'

    def get_edge_runtime_differences(self) -> Tuple[Mapping[str, str], ...]:
        return self.matrix.edge_runtime_differences

    def get_yc_limitations(self) -> Tuple[Mapping[str, str], ...]:
        return self.matrix.yc_limitations

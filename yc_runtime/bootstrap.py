"""
Construction of runtime services from settings and the deployment manifest.

Function handlers call these once per instance and reuse the results across
invocations.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .config.settings import RuntimeSettings
from .data_access.cache_metadata_repository import CacheMetadataRepository
from .data_access.document_store_client import DocumentStoreClient
from .data_access.object_storage_client import ObjectStorageClient
from .data_access.regeneration_locks_repository import RegenerationLocksRepository
from .models.manifest import DeployManifest, ISRTables, load_manifest
from .services.compat_checker import CompatibilityChecker, detect_next_version
from .services.image_optimizer import ImageOptimizer
from .services.isr_cache import ISRCache
from .services.middleware_loader import load_middleware, read_middleware_manifest
from .services.middleware_runner import MiddlewareRunner
from .services.node_sandbox import NodeSandbox
from .services.regeneration_scheduler import RegenerationScheduler
from .services.revalidation_service import RevalidationAuthorizer, RevalidationService
from .utils.metrics_emitter import MetricsEmitter
from .utils.structured_logger import LoggingContext, get_structured_logger

DEPLOY_MANIFEST_FILE = 'deploy.manifest.json'
DEFAULT_KEY_PREFIX = 'cache'

logger = get_structured_logger('Bootstrap')


def load_deploy_manifest(settings: RuntimeSettings) -> Optional[DeployManifest]:
    """Load ``deploy.manifest.json`` from the project root, if shipped."""
    path = os.path.join(settings.project_root, DEPLOY_MANIFEST_FILE)
    if not os.path.exists(path):
        logger.info('No deployment manifest found, using defaults', operation='load_manifest', path=path)
        return None
    with LoggingContext(logger, 'load_manifest', path=path):
        return load_manifest(path)


@dataclass(frozen=True)
class ISRLayout:
    """Where the ISR cache lives: explicit settings, then the manifest, then defaults."""
    key_prefix: str
    entries_table: str
    tags_table: str
    paths_table: str
    locks_table: str
    docapi_endpoint: Optional[str] = None


def manifest_key_prefix(bucket_prefix: str, build_id: str) -> str:
    """
    Blob key prefix from the manifest's ``bucketPrefix``.

    The manifest records the per-build prefix; blob keys add the build id
    themselves, so a trailing build id segment is dropped.

    Example:
        >>> manifest_key_prefix('cache/b1', 'b1')
        'cache'
        >>> manifest_key_prefix('isr/blobs/', 'b1')
        'isr/blobs'
    """
    prefix = bucket_prefix.strip('/')
    if prefix == build_id:
        return ''
    if prefix.endswith(f'/{build_id}'):
        return prefix[:-len(build_id) - 1]
    return prefix


def resolve_isr_layout(settings: RuntimeSettings, manifest: Optional[DeployManifest] = None) -> ISRLayout:
    isr = manifest.isr if manifest is not None else None
    tables = isr.tables if isr is not None else ISRTables()

    key_prefix = settings.cache_key_prefix
    if key_prefix is None and isr is not None:
        key_prefix = manifest_key_prefix(isr.bucketPrefix, settings.build_id)

    return ISRLayout(
        key_prefix=key_prefix or DEFAULT_KEY_PREFIX,
        entries_table=settings.entries_table or tables.entries,
        tags_table=settings.tags_table or tables.tags,
        paths_table=settings.paths_table or tables.paths,
        locks_table=settings.locks_table or tables.locks,
        docapi_endpoint=settings.docapi_endpoint or (isr.docapiEndpoint if isr is not None else None),
    )


def isr_enabled(settings: RuntimeSettings, manifest: Optional[DeployManifest] = None) -> bool:
    """ISR needs a bucket, and a shipped manifest must not switch it off."""
    if not settings.isr_enabled:
        return False
    if manifest is not None and not manifest.capabilities.isr.enabled:
        return False
    return True


def build_cache(
    settings: RuntimeSettings,
    manifest: Optional[DeployManifest] = None,
    metrics: Optional[MetricsEmitter] = None
) -> Tuple[Optional[ISRCache], Optional[RegenerationScheduler]]:
    """
    Build the ISR cache engine and its regeneration scheduler.

    Returns:
        (None, None) when ISR is not configured or the manifest disables it
    """
    if not isr_enabled(settings, manifest):
        if settings.isr_enabled:
            logger.info('ISR disabled by deployment manifest', operation='build_cache')
        return None, None

    layout = resolve_isr_layout(settings, manifest)
    document_client = DocumentStoreClient(region=settings.region, endpoint_url=layout.docapi_endpoint)
    scheduler = RegenerationScheduler(
        locks_repository=RegenerationLocksRepository(layout.locks_table, client=document_client),
        build_id=settings.build_id,
        lock_ttl_seconds=settings.lock_ttl_seconds,
        metrics=metrics,
    )
    cache = ISRCache(
        blob_store=ObjectStorageClient(
            settings.cache_bucket,
            region=settings.region,
            endpoint_url=settings.s3_endpoint,
        ),
        metadata=CacheMetadataRepository(
            layout.entries_table,
            layout.tags_table,
            layout.paths_table,
            client=document_client,
            batch_write_limit=settings.batch_write_limit,
        ),
        build_id=settings.build_id,
        key_prefix=layout.key_prefix,
        retention_seconds=settings.retention_seconds,
        scheduler=scheduler,
        metrics=metrics,
    )
    return cache, scheduler


def infer_middleware_mode(project_root: str) -> str:
    """
    Middleware mode for a build shipped without a deployment manifest.

    Uses the Next.js version from the build's ``package.json`` and the
    compatibility matrix; edge emulation when the version is unknown.
    """
    version = detect_next_version(project_root)
    if version is None:
        return 'edge-emulated'
    mode = CompatibilityChecker().resolve_middleware_mode(version, has_middleware=True)
    logger.info('Resolved middleware mode', operation='infer_middleware_mode', next_version=version, mode=mode)
    return mode


def build_middleware_runner(
    settings: RuntimeSettings,
    manifest: Optional[DeployManifest] = None,
    metrics: Optional[MetricsEmitter] = None
) -> MiddlewareRunner:
    """
    Build the middleware runner for the unpacked Next.js build.

    The manifest's middleware mode wins; without a manifest the mode is
    inferred from the build's Next.js version.
    """
    if manifest is not None:
        mode = manifest.middleware_mode
    else:
        mode = infer_middleware_mode(settings.project_root)
    middleware = None
    if mode != 'none':
        sandbox = NodeSandbox(
            node_binary=settings.node_binary,
            timeout_seconds=settings.middleware_timeout_seconds,
        )
        middleware = load_middleware(
            read_middleware_manifest(settings.project_root),
            settings.project_root,
            sandbox,
        )
    return MiddlewareRunner(middleware, mode=mode, metrics=metrics)


def build_revalidation_service(
    settings: RuntimeSettings,
    cache: ISRCache,
    manifest: Optional[DeployManifest] = None
) -> RevalidationService:
    """Build the revalidation service with the manifest's auth mode."""
    auth = 'hmac'
    if manifest is not None and manifest.isr is not None:
        auth = manifest.isr.auth
    authorizer = RevalidationAuthorizer(
        mode=auth,
        secret=settings.revalidation_secret,
        allowed_ips=settings.revalidation_allowed_ips,
    )
    return RevalidationService(cache, authorizer)


def build_image_optimizer(
    settings: RuntimeSettings,
    metrics: Optional[MetricsEmitter] = None
) -> ImageOptimizer:
    """Build the image optimizer; each bucket is optional."""

    def storage(bucket: Optional[str]) -> Optional[ObjectStorageClient]:
        if not bucket:
            return None
        return ObjectStorageClient(bucket, region=settings.region, endpoint_url=settings.s3_endpoint)

    return ImageOptimizer(
        project_root=settings.project_root,
        cache_store=storage(settings.image_cache_bucket),
        sources_store=storage(settings.image_sources_bucket),
        allowed_hosts=settings.image_allowed_hosts,
        quality=settings.image_quality,
        max_age_seconds=settings.image_max_age_seconds,
        metrics=metrics,
    )

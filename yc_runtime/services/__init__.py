"""
Runtime services: ISR cache engine, middleware emulation, compatibility checks,
image optimization.
"""
from .isr_cache import ISRCache
from .regeneration_scheduler import RegenerationScheduler
from .middleware_runner import MiddlewareRunner, MiddlewareResult, MiddlewareOutcome, run_middleware
from .compat_checker import CompatibilityChecker
from .render_pipeline import RenderPipeline
from .revalidation_service import RevalidationService, RevalidationAuthorizer
from .image_optimizer import ImageOptimizer

__all__ = [
    'ISRCache',
    'RegenerationScheduler',
    'MiddlewareRunner',
    'MiddlewareResult',
    'MiddlewareOutcome',
    'run_middleware',
    'CompatibilityChecker',
    'RenderPipeline',
    'RevalidationService',
    'RevalidationAuthorizer',
    'ImageOptimizer',
]

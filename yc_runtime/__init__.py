"""
Next.js runtime for Yandex Cloud Functions.

Provides the ISR cache engine, the edge-middleware emulator and the glue
that connects them to API Gateway events.
"""

__version__ = '1.0.0'

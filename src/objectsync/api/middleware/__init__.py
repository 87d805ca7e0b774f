"""API middleware package."""

from src.objectsync.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]

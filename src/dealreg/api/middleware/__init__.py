"""API middleware package."""

from src.dealreg.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]

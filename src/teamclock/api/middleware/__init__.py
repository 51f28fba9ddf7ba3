"""API middleware package."""

from src.teamclock.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]

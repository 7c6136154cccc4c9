"""Dependencies for FastAPI endpoints."""

from app.dependencies.rate_limit import limiter

__all__ = ["limiter"]

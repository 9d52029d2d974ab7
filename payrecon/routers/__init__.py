"""API routers package."""

from payrecon.routers import reconciliation

__all__ = ["reconciliation"]

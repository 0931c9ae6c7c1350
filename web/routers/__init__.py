"""FastAPI routers."""

from web.routers import chooser, health

__all__ = ["chooser", "health"]

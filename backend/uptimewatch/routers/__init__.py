"""API routers."""
from .monitors import router as monitors_router
from .incidents import router as incidents_router

__all__ = ["monitors_router", "incidents_router"]

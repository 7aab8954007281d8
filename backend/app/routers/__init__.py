"""Routers package."""

from .counterparts import router as counterparts_router
from .services import router as services_router

__all__ = ["counterparts_router", "services_router"]

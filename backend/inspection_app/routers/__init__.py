"""Institutional Inspections - API Routers"""
from .inspections import router as inspections_router
from .catalog import router as catalog_router

__all__ = [
    "inspections_router",
    "catalog_router",
]

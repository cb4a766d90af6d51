"""Public API routers exposed by the FastAPI application."""

from . import admin, files, health, invoices, shops

__all__ = [
    "admin",
    "files",
    "health",
    "invoices",
    "shops",
]

"""HTTP trigger endpoints (FastAPI)."""

from .app import AppServices, create_app

__all__ = ["AppServices", "create_app"]

"""Import alias for the Top Picks FastAPI application."""

from __future__ import annotations

from app.main import app, create_app, get_popularity_service

__all__ = ["app", "create_app", "get_popularity_service"]

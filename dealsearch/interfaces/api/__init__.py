"""
API Interface - FastAPI REST API for marketplace search.
"""

from .main import app, create_app

__all__ = ["app", "create_app"]

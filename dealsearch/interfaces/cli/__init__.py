"""
CLI Interface - Command-line tools for DealSearch.

Provides commands for:
- Search queries and suggestions
- Database setup and seeding
- Running the API server
"""

from .main import app, main

__all__ = ["app", "main"]

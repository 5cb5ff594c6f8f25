"""
asgi.py -- ASGI entry point for the book catalog.

Run with:  uvicorn asgi:app --reload

The static client build and any UI routes are served elsewhere; this
process only exposes the JSON API assembled in api/main.py.
"""

from api.main import app

__all__ = ["app"]

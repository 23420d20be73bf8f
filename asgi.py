"""
asgi.py -- ASGI entry point for the login & consent provider.

Run with:  uvicorn asgi:app --host 0.0.0.0 --port 8080

Kept separate from api/main.py so process managers have a stable import path
that does not depend on the package layout of the API layer.
"""

from api.main import app

__all__ = ["app"]

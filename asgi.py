"""
asgi.py -- ASGI entry point for the Assetra auth gateway.

api/main.py builds the app; this module only re-exports it so the server
command does not depend on the package layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]

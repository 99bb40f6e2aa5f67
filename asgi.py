"""
asgi.py -- ASGI entry point for ClubGate.

Run with:  uvicorn asgi:app --reload

The HTTP surface lives entirely in api/; this module only exposes it under
the conventional name so deployment tooling does not need to know the layout.
"""

from api.main import app

__all__ = ["app"]

"""
asgi.py -- ASGI entry point for Passport.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers point at a stable module
path that does not change when the API package is reorganised.
"""

from api.main import app

__all__ = ["app"]

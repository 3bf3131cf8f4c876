"""
asgi.py -- ASGI entry point for AuthGate.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers and the operator CLI
(main.py) have one stable import target each.
"""

from api.main import app

__all__ = ["app"]

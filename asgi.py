"""
asgi.py -- Application assembly for Warden.

The surrounding platform mounts its own routers onto this app here, never
in api/main.py, so the auth API stays independent of the features it guards.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]

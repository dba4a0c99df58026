"""
asgi.py -- Application assembly for tenantauth.

Run with:  uvicorn asgi:app --reload

api/main.py owns the app; this module is the stable import path for ASGI
servers so deployment config does not depend on package layout.
"""

from api.main import app

__all__ = ["app"]

"""
asgi.py -- Application assembly for idgate.

The ASGI server imports `app` from here rather than from api/main.py, so a
deployment target never has to know how the API package is laid out.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]

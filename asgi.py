"""
asgi.py -- ASGI entry point for tokenward.

Run with:  uvicorn asgi:app --reload

Configuration comes from the environment / .env (see core/config.py). The
signing keypair is resolved during application startup, not at import.
"""

from api.main import app

__all__ = ["app"]

"""auth/ -- Credential and session lifecycle for tokenward.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
The one exception is auth/dependencies.py, which is part of the FastAPI
dependency injection system and may import from fastapi.
"""

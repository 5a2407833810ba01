"""
asgi.py -- ASGI entry point for the identity service.

Run with:  uvicorn asgi:app --reload

api/main.py owns the application. This module exists so deployment commands
reference one stable import path regardless of how the api/ package evolves.
"""

from api.main import app

__all__ = ["app"]

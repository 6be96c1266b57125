"""HTTP API for the Library Circulation Service."""

from .app import create_app, main

__all__ = ["create_app", "main"]

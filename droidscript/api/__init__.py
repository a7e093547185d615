"""HTTP API for script validation and runs."""

from .app import create_app

__all__ = ["create_app"]

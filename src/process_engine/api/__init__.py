"""HTTP API for running workflow instances"""

from .app import create_app

__all__ = ["create_app"]

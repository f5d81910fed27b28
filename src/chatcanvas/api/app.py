"""ASGI application built from the environment."""

from .factory import create_app

app = create_app()

"""ASGI entry point for the product semantic search service."""

from src.application import create_app

app = create_app()

__all__ = ["app"]

"""REST API for match review."""

from trackback.api.endpoints import create_api_router

__all__ = ["create_api_router"]

"""HTTP endpoints del servicio de push."""

from .health import create_app, create_router

__all__ = ["create_app", "create_router"]

"""Service layer helpers for the Connectrix backend."""

from .live_queries import LiveQueryHub, live_query_hub

__all__ = ["LiveQueryHub", "live_query_hub"]

"""Clients for external catalog services."""

from .jikan import JikanClient

__all__ = ["JikanClient"]

"""Vendor adapters.

    WhoopAdapter — Whoop developer API v2 (OAuth2 authorization code + refresh)
"""

from src.wearables.adapters.whoop import WhoopAdapter

__all__ = ["WhoopAdapter"]

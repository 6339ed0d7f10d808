"""HTTP API: item registry, price views, and sweep control."""

from deal_sentinel.api.app import create_app

__all__ = ["create_app"]

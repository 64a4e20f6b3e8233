"""Read-only JSON query API for Woof records."""

from woof.web.app import create_app

__all__ = ["create_app"]

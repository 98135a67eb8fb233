"""HTTP surface for the chat relay."""

from chatrelay.api.app import create_app

__all__ = ["create_app"]

"""Account and saved-session backend for the logistics calculator client."""

from .api import app, create_app

__all__ = ["app", "create_app"]

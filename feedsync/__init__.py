"""Synchronize RSS/Atom subscriptions into a Notion database."""

__version__ = "0.1.0"

__all__ = ["__version__"]

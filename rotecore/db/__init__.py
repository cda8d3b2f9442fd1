"""Database package for rotecore.

Only ItemDatabase is exported as the public API.
"""

from .database import ItemDatabase

__all__ = ["ItemDatabase"]

"""
Entity store package: the persistence seam of the regeneration engine.
"""

from .base import EntityStore
from .memory import InMemoryStore
from .sql import SqlStore

__all__ = [
    "EntityStore",
    "InMemoryStore",
    "SqlStore",
]

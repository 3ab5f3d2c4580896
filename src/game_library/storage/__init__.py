"""
Library store implementations.
"""

from game_library.storage.base import LibraryStore
from game_library.storage.json_store import JsonFileStore
from game_library.storage.memory import InMemoryStore

__all__ = [
    "InMemoryStore",
    "JsonFileStore",
    "LibraryStore",
]

"""
User library records.

Storefront-owned titles and their resolution state.
"""

from game_library.library.models import LibraryEntry, ResolutionKey, ResolutionStatus

__all__ = [
    "LibraryEntry",
    "ResolutionKey",
    "ResolutionStatus",
]

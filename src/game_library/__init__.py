"""
Game Library Resolver.

Resolves storefront-owned games (Steam, GOG, Epic) to canonical
IGDB catalog entries.
"""

from game_library.config import Settings, get_settings
from game_library.logger import get_logger, setup_logging

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
    "__version__",
]

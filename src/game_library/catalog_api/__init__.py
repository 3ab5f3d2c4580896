"""
IGDB catalog API access: client, response contracts and admission control.
"""

from game_library.catalog_api.client import CatalogClient, IgdbClient
from game_library.catalog_api.rate_limiter import AdmissionGate, CallerClass, RateLimiter

__all__ = [
    "AdmissionGate",
    "CallerClass",
    "CatalogClient",
    "IgdbClient",
    "RateLimiter",
]

"""
Canonical catalog data and the reference index built from it.
"""

from game_library.catalog.index import IndexGeneration, IndexSnapshot, ReferenceIndex
from game_library.catalog.models import (
    CatalogEntry,
    Collection,
    Company,
    EntityFamily,
    ExternalGameMapping,
    Genre,
    Keyword,
    MappingSource,
)
from game_library.catalog.normalize import normalize_company_name, normalize_title

__all__ = [
    "CatalogEntry",
    "Collection",
    "Company",
    "EntityFamily",
    "ExternalGameMapping",
    "Genre",
    "IndexGeneration",
    "IndexSnapshot",
    "Keyword",
    "MappingSource",
    "ReferenceIndex",
    "normalize_company_name",
    "normalize_title",
]

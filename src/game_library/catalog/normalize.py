"""
Title and company name normalization.

Titles are folded to a comparable form: symbols and punctuation
removed, diacritics folded, lower-cased, standalone roman numerals
turned into digits ("Half-Life II" and "half life 2" agree).
"""

import unicodedata
from functools import lru_cache

_APOSTROPHES = frozenset("'’‘`´")

_ROMAN_NUMERALS = {
    "ii": "2",
    "iii": "3",
    "iv": "4",
    "v": "5",
    "vi": "6",
    "vii": "7",
    "viii": "8",
    "ix": "9",
    "x": "10",
}

# Not indexed: they would pull in most of the catalog as candidates.
STOPWORDS = frozenset({"a", "an", "and", "of", "the", "to", "in", "on"})

# Corporate suffixes and filler words that vary between sources.
COMPANY_FLUFF = frozenset(
    {
        "ag",
        "and",
        "co",
        "corporation",
        "development",
        "east",
        "entertainment",
        "game",
        "games",
        "gmbh",
        "inc",
        "interactive",
        "international",
        "limited",
        "llc",
        "ltd",
        "media",
        "north",
        "northwest",
        "on-line",
        "online",
        "partners",
        "production",
        "productions",
        "publishing",
        "software",
        "softworks",
        "studio",
        "studios",
        "technologies",
        "the",
        "victor",
        "west",
    }
)

# Regional office qualifiers ("Ubisoft Montreal" is still Ubisoft).
COMPANY_LOCATIONS = frozenset(
    {
        "albany",
        "asia-pacific",
        "asia",
        "austin",
        "australia",
        "baltimore",
        "birmingham",
        "boston",
        "bucharest",
        "budapest",
        "canada",
        "casablanca",
        "chicago",
        "china",
        "czech",
        "deutschland",
        "edmonton",
        "europe",
        "france",
        "frankfurt",
        "hawaii",
        "italia",
        "japan",
        "kiev",
        "london",
        "manchester",
        "marin",
        "milan",
        "monpellier",
        "montpellier",
        "montreal",
        "montréal",
        "nordic",
        "paris",
        "poland",
        "quebec",
        "québec",
        "shanghai",
        "sofia",
        "southam",
        "teesside",
        "tokyo",
        "toronto",
        "uk",
        "usa",
        "vancouver",
    }
)


@lru_cache(maxsize=65536)
def normalize_title(title: str) -> str:
    """
    Fold a title into its comparable form.

    Args:
        title: Title as reported by a storefront or the catalog

    Returns:
        Space-separated lower-case tokens, possibly empty

    Example:
        >>> normalize_title("Half-Life 2™")
        'half life 2'
        >>> normalize_title("Assassin's Creed II")
        'assassins creed 2'
    """
    # Symbols first: NFKD would expand ™ into "TM".
    text = "".join(" " if unicodedata.category(ch).startswith("S") else ch for ch in title)
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.casefold()

    chars: list[str] = []
    for ch in text:
        if ch in _APOSTROPHES:
            continue
        category = unicodedata.category(ch)
        if category.startswith(("P", "S", "Z", "C")):
            chars.append(" ")
        else:
            chars.append(ch)

    tokens = [_ROMAN_NUMERALS.get(token, token) for token in "".join(chars).split()]
    return " ".join(tokens)


def title_tokens(normalized: str) -> tuple[str, ...]:
    """
    Tokens of a normalized title used for candidate generation.

    Stopwords are dropped unless the title has nothing else.
    """
    tokens = tuple(dict.fromkeys(normalized.split()))
    meaningful = tuple(t for t in tokens if t not in STOPWORDS)
    return meaningful or tokens


def normalize_company_name(name: str) -> str:
    """
    Reduce a company name to its distinctive part.

    Example:
        >>> normalize_company_name("Ubisoft Montreal Inc.")
        'ubisoft'
    """
    name = name.replace(".", "").replace(",", "")
    tokens = [token.casefold() for token in name.split()]
    kept = [t for t in tokens if t not in COMPANY_FLUFF and t not in COMPANY_LOCATIONS]
    return " ".join(kept) if kept else " ".join(tokens)

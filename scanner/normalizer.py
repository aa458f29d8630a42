"""
Title normalization, entity extraction and category detection.

Pure functions, no I/O. normalize() is idempotent: normalize(normalize(x)) == normalize(x).
"""

from __future__ import annotations

import re

STOP_WORDS = frozenset({
    "will", "the", "be", "a", "an", "in", "on", "at", "to", "for", "of", "and", "or",
    "is", "it", "by", "with", "as", "this", "that", "what", "when", "where", "who",
    "how", "which", "their", "its", "his", "her", "before", "after", "during", "between",
})

# canonical -> aliases. Canonical is what ends up in the entity set.
ENTITY_ALIASES: dict[str, tuple[str, ...]] = {
    "trump": ("donald trump", "donald j trump", "djt"),
    "biden": ("joe biden", "joseph biden"),
    "bitcoin": ("btc",),
    "ethereum": ("eth",),
    "elon musk": ("elon", "musk"),
    "super bowl": ("superbowl", "sb"),
    "nfl": ("national football league",),
    "nba": ("national basketball association",),
    "mlb": ("major league baseball",),
    "fed": ("federal reserve", "fomc"),
}

_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}\b)")
_TOKEN = re.compile(r"\d+(?:\.\d+)?[a-z]*|[a-z0-9]+")
_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")
_SUFFIXED_NUMBER = re.compile(r"\b(\d+(?:\.\d+)?)([km])\b")
_PROPER_NOUN = re.compile(r"\b[A-Z][A-Za-z]+\b")

_CATEGORY_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("politics", re.compile(
        r"\b(politic\w*|elect\w*|vote\w*|trump|biden|congress|senate|president\w*|governor)\b")),
    ("crypto", re.compile(
        r"\b(bitcoin|btc|ethereum|eth|crypto\w*|solana|sol|xrp|doge\w*)\b")),
    ("sports", re.compile(
        r"\b(nfl|nba|mlb|nhl|soccer|football|basketball|baseball|hockey|super bowl|world cup|olympics)\b")),
    ("finance", re.compile(
        r"\b(fed|interest rates?|inflation|gdp|stocks?|s&p|nasdaq|dow|earnings)\b")),
    ("entertainment", re.compile(
        r"\b(oscars?|grammys?|emmys?|movies?|films?|celebrit\w*|entertainment|music)\b")),
    ("weather", re.compile(r"\b(weather|temperature|hurricanes?|storms?)\b")),
)

CATEGORIES = tuple(name for name, _ in _CATEGORY_RULES) + ("general",)

KNOWN_ENTITIES = frozenset(ENTITY_ALIASES)


def normalize(raw_title: str) -> str:
    """
    Canonicalize a market title for comparison.

    Lowercases, drops punctuation and thousands separators, removes filler
    words and single-letter words, and collapses whitespace. Decimal numbers
    survive intact ("0.25" stays "0.25").
    """
    text = _THOUSANDS.sub("", raw_title.lower())
    words = [
        tok for tok in _TOKEN.findall(text)
        if tok not in STOP_WORDS and (len(tok) > 1 or tok.isdigit())
    ]
    return " ".join(words)


def _expand_number(value: str, suffix: str = "") -> str:
    multiplier = {"k": 1_000, "m": 1_000_000}.get(suffix, 1)
    number = float(value) * multiplier
    if number.is_integer():
        return str(int(number))
    return f"{number:g}"


def is_numeric_entity(entity: str) -> bool:
    return bool(_NUMBER.match(entity))


def extract_entities(title: str) -> tuple[str, ...]:
    """
    Pull comparable entities out of a title: known aliases (as their canonical
    name), numeric quantities (with k/m suffixes expanded), and proper nouns
    when the source text carries capitalization.

    Accepts raw or normalized titles. Returns an ordered, de-duplicated tuple.
    """
    entities: dict[str, None] = {}
    normalized = normalize(title)
    padded = f" {normalized} "

    for canonical, aliases in ENTITY_ALIASES.items():
        if any(f" {phrase} " in padded for phrase in (canonical, *aliases)):
            entities[canonical] = None

    alias_words = {
        word
        for canonical, aliases in ENTITY_ALIASES.items()
        for phrase in (canonical, *aliases)
        for word in phrase.split()
    }

    for word in _PROPER_NOUN.findall(title):
        lowered = word.lower()
        if lowered in STOP_WORDS or lowered in alias_words:
            continue
        entities[lowered] = None

    for value, suffix in _SUFFIXED_NUMBER.findall(normalized):
        entities[_expand_number(value, suffix)] = None
    for tok in normalized.split():
        if is_numeric_entity(tok):
            entities[_expand_number(tok)] = None

    return tuple(entities)


def detect_category(*texts: str) -> str:
    """Classify by keyword rules over the given texts. Falls back to 'general'."""
    blob = " ".join(t for t in texts if t).lower()
    for name, pattern in _CATEGORY_RULES:
        if pattern.search(blob):
            return name
    return "general"

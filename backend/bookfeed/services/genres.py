"""
Static genre tables and the genre expander used by the personalized feed.

Two tables, two purposes:

- GENRE_SYNONYMS widens the exact-match tier. Every label here means "the same
  genre, spelled the way some catalog source spells it".
- GENRE_RELATIONSHIPS powers the related-genre tier. Labels here are broader,
  lower-confidence neighbours of the genre.

Catalog category strings are free text ("Fiction / Mystery & Detective / General"),
so every label is matched as a case-insensitive substring, never by equality.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple


def genre_key(label: str) -> str:
    """Lookup key for a genre label: lowercase, '-' and '_' treated as spaces."""
    return " ".join(label.lower().replace("-", " ").replace("_", " ").split())


def _freeze(table: Dict[str, Iterable[str]]) -> Mapping[str, Tuple[str, ...]]:
    return MappingProxyType({genre_key(k): tuple(v) for k, v in table.items()})


# Canonical genre -> spellings used by catalog sources
GENRE_MAPPING: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "Science Fiction": ("Sci-Fi", "SciFi", "Science Fiction & Fantasy", "SF"),
    "Fantasy": ("Fantasy", "Epic Fantasy", "Urban Fantasy", "High Fantasy"),
    "Mystery": ("Mystery", "Detective", "Crime", "Whodunit"),
    "Thriller": ("Thriller", "Suspense", "Psychological Thriller"),
    "Romance": ("Romance", "Contemporary Romance", "Historical Romance"),
    "Horror": ("Horror", "Gothic", "Supernatural Horror"),
    "Historical Fiction": ("Historical", "Historical Fiction"),
    "Biography": ("Biography", "Memoir", "Autobiography"),
    "Self-Help": ("Self-Help", "Personal Development", "Self Improvement"),
    "Business": ("Business", "Economics", "Management"),
    "Fiction": ("Literary Fiction", "Contemporary Fiction", "General Fiction"),
    "Non-Fiction": ("Nonfiction", "Non-Fiction"),
    "Young Adult": ("YA", "Young Adult", "Teen"),
    "Children": ("Children", "Kids", "Juvenile"),
})

# Common variations seen in onboarding selections
_COMMON_VARIATIONS = {
    "fiction": ["literary fiction", "contemporary fiction", "general fiction"],
    "mystery": ["thriller", "crime", "detective", "suspense", "noir", "mystery & thriller"],
    "thriller": ["mystery & thriller", "suspense", "psychological thriller"],
    "romance": ["romantic", "love story", "romantic fiction"],
    "science-fiction": ["sci-fi", "science fiction", "sf"],
    "fantasy": ["fantasy fiction", "epic fantasy", "urban fantasy"],
    "horror": ["horror fiction", "supernatural", "gothic"],
    "historical": ["historical fiction", "history"],
    "biography": ["biography & autobiography", "memoir", "autobiography"],
    "self-help": ["self improvement", "personal development", "motivational"],
    "business": ["business & economics", "management", "entrepreneurship"],
    "non-fiction": ["nonfiction", "non fiction", "general nonfiction"],
    "young-adult": ["ya", "young adult", "teen"],
    "classics": ["classic literature", "literary classics"],
    "poetry": ["poems", "verse", "poetic"],
}


def _merge_synonyms() -> Dict[str, List[str]]:
    merged: Dict[str, List[str]] = {}
    for standard, variations in GENRE_MAPPING.items():
        merged.setdefault(genre_key(standard), []).extend(variations)
    for genre, variations in _COMMON_VARIATIONS.items():
        merged.setdefault(genre_key(genre), []).extend(variations)
    return {k: _dedupe(v) for k, v in merged.items()}


def _dedupe(labels: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for label in labels:
        label = (label or "").strip()
        key = label.lower()
        if not label or key in seen:
            continue
        seen.add(key)
        unique.append(label)
    return unique


GENRE_SYNONYMS: Mapping[str, Tuple[str, ...]] = _freeze(_merge_synonyms())

GENRE_RELATIONSHIPS: Mapping[str, Tuple[str, ...]] = _freeze({
    "fiction": ["literary fiction", "drama", "family saga", "short stories"],
    "mystery": ["psychological fiction", "legal fiction", "espionage", "cozy"],
    "thriller": ["espionage", "action & adventure", "legal fiction", "political fiction"],
    "romance": ["women's fiction", "chick lit", "romantic comedy", "family saga"],
    "science fiction": ["dystopian", "space opera", "cyberpunk", "fantasy", "technology"],
    "fantasy": ["mythology", "fairy tales", "science fiction", "magical realism", "folklore"],
    "horror": ["paranormal", "occult", "ghost", "dark fantasy"],
    "historical": ["war", "military", "world history", "historical romance"],
    "historical fiction": ["war", "military", "world history", "historical romance"],
    "biography": ["history", "true crime", "personal memoirs", "letters"],
    "self help": ["psychology", "health & fitness", "body, mind & spirit", "philosophy"],
    "business": ["finance", "leadership", "marketing", "careers", "investing"],
    "non fiction": ["history", "science", "social science", "true crime", "essays"],
    "young adult": ["coming of age", "juvenile fiction", "new adult"],
    "children": ["picture books", "juvenile nonfiction", "middle grade"],
    "classics": ["literary criticism", "drama", "poetry", "literary fiction"],
    "poetry": ["literary collections", "drama", "classics"],
    "philosophy": ["religion", "psychology", "political science"],
    "science": ["nature", "mathematics", "technology", "medical"],
})


@dataclass(frozen=True)
class GenreExpansion:
    """Expanded genre labels for one set of selected genres."""
    exact: Tuple[str, ...] = field(default_factory=tuple)  # originals + synonyms (tier 1)
    related: Tuple[str, ...] = field(default_factory=tuple)  # relationship labels (tier 2)


class GenreExpander:
    """Expand selected genres through the synonym and relationship tables."""

    def __init__(
        self,
        synonyms: Mapping[str, Tuple[str, ...]] = GENRE_SYNONYMS,
        relationships: Mapping[str, Tuple[str, ...]] = GENRE_RELATIONSHIPS,
    ):
        self.synonyms = synonyms
        self.relationships = relationships

    def expand_exact(self, genres: Iterable[str]) -> Tuple[str, ...]:
        labels: List[str] = []
        for genre in genres:
            labels.append(genre)
            labels.extend(self.synonyms.get(genre_key(genre), ()))
        return tuple(_dedupe(labels))

    def expand_related(self, genres: Iterable[str]) -> Tuple[str, ...]:
        labels: List[str] = []
        for genre in genres:
            labels.extend(self.relationships.get(genre_key(genre), ()))
        return tuple(_dedupe(labels))

    def expand(self, genres: Iterable[str]) -> GenreExpansion:
        genres = list(genres)
        exact = self.expand_exact(genres)
        exact_keys = {label.lower() for label in exact}
        related = tuple(label for label in self.expand_related(genres) if label.lower() not in exact_keys)
        return GenreExpansion(exact=exact, related=related)

"""
Load a user's onboarding choices and implicit genre weights for the feed.

The preference store is written by several collaborators, so the same field
can arrive in different shapes. All of that is absorbed here; the rest of the
feed only sees ResolvedPreferences.
"""
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Iterable, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from bookfeed.models import UserPreference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPreferences:
    genre_names: Tuple[str, ...] = ()
    author_names: Tuple[str, ...] = ()
    genre_weights: "OrderedDict[str, float]" = field(default_factory=OrderedDict)
    has_onboarding: bool = False

    @classmethod
    def empty(cls) -> "ResolvedPreferences":
        return cls()

    @property
    def has_signal(self) -> bool:
        return bool(self.genre_names or self.author_names)


def _as_weight(value: Any) -> Optional[float]:
    # bool is a Real subclass; True is not a weight
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    return float(value)


def _iter_weight_entries(raw: Any) -> Iterable[Tuple[Any, Any]]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        return raw.items()
    if isinstance(raw, (list, tuple)):
        entries = []
        for item in raw:
            if isinstance(item, Mapping):
                entries.append((item.get("genre"), item.get("weight")))
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                entries.append((item[0], item[1]))
            else:
                logger.debug("[FEED] Ignoring genre weight entry %r", item)
        return entries
    logger.warning("[FEED] Unsupported genreWeights encoding: %s", type(raw).__name__)
    return []


def normalize_genre_weights(raw: Any) -> "OrderedDict[str, float]":
    """
    Normalize genre weights to an OrderedDict sorted by descending weight.

    Accepts None, any mapping, a list of [genre, weight] pairs, or a list of
    {"genre": ..., "weight": ...} records. Entries with a blank label or a
    non-numeric weight are dropped; a repeated label keeps its last weight.
    """
    weights = {}
    for genre, weight in _iter_weight_entries(raw):
        if not isinstance(genre, str) or not genre.strip():
            continue
        value = _as_weight(weight)
        if value is None:
            continue
        weights[genre.strip()] = value
    # sorted() is stable, so equal weights keep insertion order
    return OrderedDict(sorted(weights.items(), key=lambda kv: -kv[1]))


def top_genres(weights: Mapping, n: int = 5) -> List[str]:
    return list(weights.keys())[:n]


def _unique_labels(labels: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    out = []
    for label in labels:
        if not isinstance(label, str):
            continue
        label = label.strip()
        if not label or label.lower() in seen:
            continue
        seen.add(label.lower())
        out.append(label)
    return tuple(out)


def normalize_onboarding_genres(raw: Any) -> Tuple[str, ...]:
    """Onboarding genres as labels; explicit weights, when present, set the order."""
    if not isinstance(raw, (list, tuple)):
        return ()
    entries = []
    has_weights = False
    for position, item in enumerate(raw):
        if isinstance(item, str):
            entries.append((item, None, position))
        elif isinstance(item, Mapping):
            weight = _as_weight(item.get("weight"))
            has_weights = has_weights or weight is not None
            entries.append((item.get("genre"), weight, position))
    if has_weights:
        entries.sort(key=lambda e: (-(e[1] if e[1] is not None else 0.0), e[2]))
    return _unique_labels(e[0] for e in entries)


class PreferenceResolver:
    """Read-only view over the user preference store."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, user_id: UUID) -> Optional[UserPreference]:
        return (
            self.db.query(UserPreference)
            .filter(UserPreference.user_id == user_id)
            .first()
        )

    def resolve(self, user_id: UUID) -> ResolvedPreferences:
        """
        Resolve preferences for a user.

        A missing record, or a record without onboarding data, is not an error:
        it resolves to empty genre/author lists so the popularity tier still runs.
        """
        record = self.load(user_id)
        if record is None:
            logger.info("[FEED] No preference record for user %s", user_id)
            return ResolvedPreferences.empty()

        implicit = record.implicit_preferences if isinstance(record.implicit_preferences, Mapping) else {}
        genre_weights = normalize_genre_weights(implicit.get("genreWeights"))

        onboarding = record.onboarding
        if not isinstance(onboarding, Mapping) or not onboarding:
            logger.info("[FEED] No onboarding data for user %s", user_id)
            return ResolvedPreferences(genre_weights=genre_weights)

        authors = onboarding.get("favoriteAuthors")
        return ResolvedPreferences(
            genre_names=normalize_onboarding_genres(onboarding.get("genres")),
            author_names=_unique_labels(authors if isinstance(authors, (list, tuple)) else []),
            genre_weights=genre_weights,
            has_onboarding=True,
        )

"""
Personalized feed assembly for the onboarding feed.

Three catalog passes ("tiers") of decreasing specificity are merged into one
de-duplicated, tier-ordered candidate superset, which is then paginated:

    tier 1  exact/expanded genre match, or favorite-author match
    tier 2  related genres from the relationship table
    tier 3  popularity fallback, so the feed never runs dry

The superset is rebuilt on every request; nothing is cached between pages.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID
import logging
import math

from sqlalchemy import String, and_, cast, or_
from sqlalchemy.orm import Session

from bookfeed.models import Book
from bookfeed.services.genres import GenreExpander
from bookfeed.services.preferences import PreferenceResolver, ResolvedPreferences
from bookfeed.utils.timing import time_operation

logger = logging.getLogger(__name__)

TIER_EXACT = 1
TIER_RELATED = 2
TIER_POPULAR = 3

# Tier fetch sizes: max(limit * LIMIT_MULTIPLIER, depth term). Heuristics, tune freely.
TIER1_LIMIT_MULTIPLIER = 10
TIER1_DEPTH_MULTIPLIER = 2
TIER2_LIMIT_MULTIPLIER = 5
TIER2_DEPTH_MULTIPLIER = 1.5
TIER3_LIMIT_MULTIPLIER = 3
TIER3_PAGE_PADDING = 5

# Popularity tier quality floor
POPULAR_MIN_RATING = 3.5
POPULAR_MIN_RATINGS_COUNT = 10

# Author name tokens shorter than this are ignored ("J.", "de", "Le")
MIN_AUTHOR_TOKEN_LENGTH = 3

SHUFFLE_SEED_MODULUS = 10000


def tier1_fetch_size(page: int, limit: int) -> int:
    return max(limit * TIER1_LIMIT_MULTIPLIER, page * limit * TIER1_DEPTH_MULTIPLIER)


def tier2_fetch_size(page: int, limit: int) -> int:
    return max(limit * TIER2_LIMIT_MULTIPLIER, math.ceil(page * limit * TIER2_DEPTH_MULTIPLIER))


def tier3_fetch_size(page: int, limit: int) -> int:
    return max(limit * TIER3_LIMIT_MULTIPLIER, (page + TIER3_PAGE_PADDING) * limit)


# ----------------------------
# Query building
# ----------------------------
def _like_pattern(label: str) -> str:
    escaped = label.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def contains_any(column, labels: Iterable[str]):
    """Case-insensitive substring match of any label against a JSON list column."""
    # The JSON text of the list contains every element verbatim.
    text = cast(column, String)
    return [text.ilike(_like_pattern(label), escape="\\") for label in labels]


def has_cover():
    return and_(Book.thumbnail_url.isnot(None), Book.thumbnail_url != "")


def author_tokens(author_names: Iterable[str]) -> List[str]:
    """Split favorite authors into matchable tokens ("J.K. Rowling" -> ["J.K.", "Rowling"])."""
    tokens: List[str] = []
    seen: Set[str] = set()
    for name in author_names:
        for part in name.strip().split():
            if len(part) < MIN_AUTHOR_TOKEN_LENGTH or part.lower() in seen:
                continue
            seen.add(part.lower())
            tokens.append(part)
    return tokens


def exclude_seen(books: Iterable[Book], seen_ids: Set, size: int) -> List[Book]:
    """
    Drop books a higher tier already claimed, then cut to size.

    Callers fetch `size + len(seen_ids)` rows, so up to `size` new books survive
    without sending the seen ids to the database as a NOT IN list.
    """
    return [b for b in books if b.id not in seen_ids][:size]


# ----------------------------
# Retrieval
# ----------------------------
@dataclass
class TierResults:
    """Tier output of one retrieval. Tiers 2 and 3 hold only ids no higher tier claimed."""
    tier1: List[Book] = field(default_factory=list)
    tier2: List[Book] = field(default_factory=list)
    tier3: List[Book] = field(default_factory=list)
    executed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return bool(self.executed) and set(self.executed) == set(self.failed)

    def in_priority_order(self) -> List[Tuple[int, List[Book]]]:
        return [(TIER_EXACT, self.tier1), (TIER_RELATED, self.tier2), (TIER_POPULAR, self.tier3)]


class TieredCandidateRetriever:
    """Runs the three tier queries against the catalog, in priority order."""

    def __init__(
        self,
        db: Session,
        resolver: Optional[PreferenceResolver] = None,
        expander: Optional[GenreExpander] = None,
    ):
        self.db = db
        self.resolver = resolver or PreferenceResolver(db)
        self.expander = expander or GenreExpander()

    def fetch_exact(self, genre_labels: Sequence[str], tokens: Sequence[str], size: int) -> List[Book]:
        conditions = contains_any(Book.categories, genre_labels) + contains_any(Book.authors, tokens)
        return (
            self.db.query(Book)
            .filter(has_cover(), or_(*conditions))
            .order_by(
                Book.average_rating.desc().nulls_last(),
                Book.ratings_count.desc().nulls_last(),
                Book.published_date.desc().nulls_last(),
                Book.id.asc(),
            )
            .limit(size)
            .all()
        )

    def fetch_related(self, genre_labels: Sequence[str], size: int) -> List[Book]:
        return (
            self.db.query(Book)
            .filter(has_cover(), or_(*contains_any(Book.categories, genre_labels)))
            .order_by(
                Book.average_rating.desc().nulls_last(),
                Book.ratings_count.desc().nulls_last(),
                Book.id.asc(),
            )
            .limit(size)
            .all()
        )

    def fetch_popular(self, size: int) -> List[Book]:
        return (
            self.db.query(Book)
            .filter(
                has_cover(),
                Book.average_rating >= POPULAR_MIN_RATING,
                Book.ratings_count >= POPULAR_MIN_RATINGS_COUNT,
            )
            .order_by(
                Book.average_rating.desc(),
                Book.ratings_count.desc(),
                Book.id.asc(),
            )
            .limit(size)
            .all()
        )

    def _resolve_preferences(self, user_id: UUID) -> ResolvedPreferences:
        try:
            return self.resolver.resolve(user_id)
        except Exception:
            logger.exception("[FEED] Failed to load preferences for user %s, continuing without them", user_id)
            self.db.rollback()
            return ResolvedPreferences.empty()

    def _run_tier(self, tier: int, results: TierResults, query: Callable[[], List[Book]]) -> List[Book]:
        results.executed.append(tier)
        try:
            with time_operation(f"[FEED] tier{tier} query"):
                return query()
        except Exception:
            logger.exception("[FEED] Tier %s query failed, continuing with remaining tiers", tier)
            results.failed.append(tier)
            # A failed statement aborts the transaction on Postgres
            self.db.rollback()
            return []

    def retrieve(self, user_id: UUID, page: int, limit: int) -> TierResults:
        prefs = self._resolve_preferences(user_id)
        expansion = self.expander.expand(prefs.genre_names)
        tokens = author_tokens(prefs.author_names)
        results = TierResults()
        logger.info(
            "[FEED] user=%s onboarding=%s genres=%s authors=%s weighted_genres=%s",
            user_id, prefs.has_onboarding, len(prefs.genre_names), len(prefs.author_names),
            len(prefs.genre_weights),
        )
        if not prefs.has_signal:
            logger.info("[FEED] No preference signal for user %s, popularity tier only", user_id)

        if prefs.genre_names or tokens:
            genre_labels = expansion.exact if prefs.genre_names else ()
            logger.debug("[FEED] tier1 genre patterns=%s author tokens=%s", genre_labels, tokens)
            results.tier1 = self._run_tier(
                TIER_EXACT, results,
                lambda: self.fetch_exact(genre_labels, tokens, tier1_fetch_size(page, limit)),
            )
        seen_ids = {b.id for b in results.tier1}

        if prefs.genre_names and expansion.related:
            logger.debug("[FEED] tier2 related patterns=%s", expansion.related)
            size = tier2_fetch_size(page, limit)
            results.tier2 = exclude_seen(
                self._run_tier(
                    TIER_RELATED, results,
                    lambda: self.fetch_related(expansion.related, size + len(seen_ids)),
                ),
                seen_ids, size,
            )
            seen_ids.update(b.id for b in results.tier2)

        size = tier3_fetch_size(page, limit)
        results.tier3 = exclude_seen(
            self._run_tier(
                TIER_POPULAR, results,
                lambda: self.fetch_popular(size + len(seen_ids)),
            ),
            seen_ids, size,
        )
        return results


# ----------------------------
# Dedup, shuffle, pagination
# ----------------------------
@dataclass
class Candidate:
    book: Book
    tier: int
    insertion_order: int


def title_author_key(book: Book) -> str:
    return f"{(book.title or '').lower().strip()}|{book.primary_author.lower().strip()}"


def is_displayable(book: Book) -> bool:
    return bool(book.cover_url and (book.title or "").strip() and book.authors)


class Deduplicator:
    """
    Seen-set bookkeeping for one assembly call.

    Ids are claimed tier by tier in priority order, so a book found by several
    tiers stays in the highest-priority one. The title+author pass then runs
    over the whole superset to catch distinct catalog entries for the same book.
    """

    def __init__(self):
        self.seen_ids: Set = set()
        self.seen_keys: Set[str] = set()
        self.candidates: List[Candidate] = []

    def add_tier(self, tier: int, books: Iterable[Book]) -> int:
        added = 0
        for book in books:
            if book.id in self.seen_ids:
                continue
            self.seen_ids.add(book.id)
            self.candidates.append(Candidate(book=book, tier=tier, insertion_order=len(self.candidates)))
            added += 1
        return added

    def superset(self) -> List[Candidate]:
        self.seen_keys = set()
        unique: List[Candidate] = []
        for candidate in self.candidates:
            if not is_displayable(candidate.book):
                continue
            key = title_author_key(candidate.book)
            if key in self.seen_keys:
                continue
            self.seen_keys.add(key)
            unique.append(candidate)
        return unique


def shuffle_seed(user_id: str, page: int) -> int:
    return (sum(ord(c) for c in user_id) + page) % SHUFFLE_SEED_MODULUS


def seeded_shuffle(items: List, user_id: str, page: int) -> List:
    """In-place deterministic permutation keyed by (user, page). Returns items."""
    seed = shuffle_seed(user_id, page)
    for i in range(len(items) - 1, 0, -1):
        j = (seed + i) % (i + 1)
        items[i], items[j] = items[j], items[i]
    return items


@dataclass
class FeedPage:
    items: List[Book]
    page: int
    limit: int
    total: int
    has_more: bool
    # Tier of each item, same order. Diagnostic only: logged, never serialized.
    tiers: List[int] = field(default_factory=list)

    @classmethod
    def empty(cls, page: int, limit: int) -> "FeedPage":
        return cls(items=[], page=page, limit=limit, total=0, has_more=False)


def paginate(superset: Sequence[Candidate], page: int, limit: int) -> Tuple[List[Candidate], int, bool]:
    start = (page - 1) * limit
    end = page * limit
    return list(superset[start:end]), len(superset), end < len(superset)


# ----------------------------
# Assembly
# ----------------------------
class FeedAssembler:
    """Builds one page of the onboarding feed. Never raises for data problems."""

    def __init__(self, db: Optional[Session] = None, retriever: Optional[TieredCandidateRetriever] = None):
        if retriever is None and db is None:
            raise ValueError("FeedAssembler needs a database session or a retriever")
        self.retriever = retriever or TieredCandidateRetriever(db)

    def assemble(self, user_id: UUID, page: int, limit: int) -> FeedPage:
        try:
            results = self.retriever.retrieve(user_id, page, limit)
        except Exception:
            logger.exception("[FEED] Retrieval failed for user %s page=%s", user_id, page)
            return FeedPage.empty(page, limit)

        if results.all_failed:
            logger.error("[FEED] All tiers failed for user %s page=%s, returning empty page", user_id, page)
            return FeedPage.empty(page, limit)

        dedup = Deduplicator()
        added: Dict[int, int] = {}
        for tier, books in results.in_priority_order():
            added[tier] = dedup.add_tier(tier, books)
        superset = dedup.superset()

        window, total, has_more = paginate(superset, page, limit)

        # Tier 3 is reordered inside the page window only; tiers 1-2 keep rating order
        # and tier-3 pages stay disjoint from one another.
        positions = [i for i, c in enumerate(window) if c.tier == TIER_POPULAR]
        popular = seeded_shuffle([window[i] for i in positions], str(user_id), page)
        for position, candidate in zip(positions, popular):
            window[position] = candidate

        tiers = [c.tier for c in window]
        logger.info(
            "[FEED] user=%s page=%s limit=%s raw=(%s,%s,%s) added=%s superset=%s returned=%s "
            "page_tiers=%s has_more=%s failed=%s",
            user_id, page, limit,
            len(results.tier1), len(results.tier2), len(results.tier3),
            added, total, len(window), dict(Counter(tiers)), has_more, results.failed,
        )
        return FeedPage(
            items=[c.book for c in window],
            page=page,
            limit=limit,
            total=total,
            has_more=has_more,
            tiers=tiers,
        )

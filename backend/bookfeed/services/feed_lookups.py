"""
Single-query lookups for the non-onboarding feed types.

Each lookup over-fetches (limit * 2) because the response transform drops
undisplayable books and title+author duplicates before cutting to `limit`.
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import UUID
import enum
import json
import logging

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from bookfeed.models import Book, Follow, ShelfStatus, UserBookStatusModel
from bookfeed.services.feed_engine import TieredCandidateRetriever, contains_any, has_cover, author_tokens
from bookfeed.services.preferences import PreferenceResolver, top_genres

logger = logging.getLogger(__name__)

OVERFETCH_FACTOR = 2
RECOMMENDED_MIN_RATING = 3.5
RECOMMENDED_MIN_RATINGS_COUNT = 5
TRENDING_WINDOW_DAYS = 7
FRIEND_MIN_RATING = 4

FAVORITE_SEED_LIMIT = 10
SHELF_SEED_LIMIT = 5
AUTHOR_SEED_BOOKS = 20
AUTHOR_SEED_LIMIT = 10


class FeedType(str, enum.Enum):
    RECOMMENDED = "recommended"
    FAVORITES = "favorites"
    AUTHORS = "authors"
    GENRES = "genres"
    CONTINUE_READING = "continue-reading"
    FRIENDS = "friends"
    ONBOARDING = "onboarding"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "FeedType":
        """Unknown or missing types fall back to RECOMMENDED."""
        try:
            return cls(raw)
        except ValueError:
            return cls.RECOMMENDED


def _contains_element(column, values: Iterable[str]):
    """Match JSON list columns holding any of the exact values (case-insensitive)."""
    text = cast(column, String)
    clauses = []
    for value in values:
        quoted = json.dumps(value, ensure_ascii=False)
        escaped = quoted.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        clauses.append(text.ilike(f"%{escaped}%", escape="\\"))
    return clauses


def _shelf_book_ids(
    db: Session,
    user_ids: Sequence[UUID],
    statuses: Optional[Sequence[ShelfStatus]] = None,
    limit: Optional[int] = None,
) -> List[UUID]:
    """Distinct shelved book ids, oldest shelving first."""
    q = db.query(UserBookStatusModel).filter(UserBookStatusModel.user_id.in_(list(user_ids)))
    if statuses:
        q = q.filter(UserBookStatusModel.status.in_([s.value for s in statuses]))
    rows = q.order_by(UserBookStatusModel.created_at.asc(), UserBookStatusModel.id.asc()).all()
    ids: List[UUID] = []
    for row in rows:
        if row.book_id not in ids:
            ids.append(row.book_id)
    return ids[:limit] if limit is not None else ids


def _books_by_ids(db: Session, ids: Sequence[UUID]) -> List[Book]:
    if not ids:
        return []
    books = db.query(Book).filter(Book.id.in_(list(ids))).all()
    by_id = {b.id: b for b in books}
    return [by_id[i] for i in ids if i in by_id]


def _by_rating(q):
    return q.order_by(
        Book.average_rating.desc().nulls_last(),
        Book.ratings_count.desc().nulls_last(),
        Book.id.asc(),
    )


def get_recommended_books(db: Session, user_id: UUID, limit: int) -> List[Book]:
    """
    Books in the user's strongest implicit genres or by their favorite authors.

    Falls back to the popularity query when there is no signal or no match.
    Failures are logged and yield an empty list.
    """
    try:
        prefs = PreferenceResolver(db).resolve(user_id)
        genres = top_genres(prefs.genre_weights, 5)
        tokens = author_tokens(prefs.author_names)
        books: List[Book] = []
        if genres or tokens:
            shelved = _shelf_book_ids(db, [user_id])
            q = db.query(Book).filter(
                has_cover(),
                or_(*(contains_any(Book.categories, genres) + contains_any(Book.authors, tokens))),
                Book.average_rating >= RECOMMENDED_MIN_RATING,
                Book.ratings_count >= RECOMMENDED_MIN_RATINGS_COUNT,
            )
            if shelved:
                q = q.filter(Book.id.notin_(shelved))
            books = _by_rating(q).limit(limit * OVERFETCH_FACTOR).all()
        if not books:
            logger.info("[FEED] No personalized matches for user %s, using popular books", user_id)
            books = TieredCandidateRetriever(db).fetch_popular(limit * OVERFETCH_FACTOR)
        return books
    except Exception:
        logger.exception("[FEED] Error getting recommended books for user %s", user_id)
        db.rollback()
        return []


def get_favorites_books(db: Session, user_id: UUID, limit: int) -> List[Book]:
    """Books sharing a category or author with the user's favorites (or, lacking those, their shelf)."""
    seed_ids = _shelf_book_ids(db, [user_id], [ShelfStatus.FAVORITE, ShelfStatus.TOP], FAVORITE_SEED_LIMIT)
    if not seed_ids:
        seed_ids = _shelf_book_ids(db, [user_id], limit=SHELF_SEED_LIMIT)
    if not seed_ids:
        return []

    genres, authors = [], []
    for book in _books_by_ids(db, seed_ids):
        genres.extend(c for c in (book.categories or []) if c not in genres)
        authors.extend(a for a in (book.authors or []) if a not in authors)
    if not genres and not authors:
        return []

    q = db.query(Book).filter(
        Book.id.notin_(seed_ids),
        has_cover(),
        or_(*(_contains_element(Book.categories, genres) + _contains_element(Book.authors, authors))),
    )
    return _by_rating(q).limit(limit * OVERFETCH_FACTOR).all()


def get_author_books(db: Session, user_id: UUID, limit: int) -> List[Book]:
    """Books by authors the user has on their shelves."""
    authors: List[str] = []
    for book in _books_by_ids(db, _shelf_book_ids(db, [user_id], limit=AUTHOR_SEED_BOOKS)):
        authors.extend(a for a in (book.authors or []) if a not in authors)
    authors = authors[:AUTHOR_SEED_LIMIT]
    if not authors:
        return []
    q = db.query(Book).filter(has_cover(), or_(*_contains_element(Book.authors, authors)))
    return _by_rating(q).limit(limit * OVERFETCH_FACTOR).all()


def get_genre_books(db: Session, user_id: UUID, limit: int) -> List[Book]:
    """Recently active books in the user's top implicit genres."""
    prefs = PreferenceResolver(db).resolve(user_id)
    genres = top_genres(prefs.genre_weights, 5)
    if not genres:
        return []
    week_ago = datetime.utcnow() - timedelta(days=TRENDING_WINDOW_DAYS)
    return (
        db.query(Book)
        .filter(
            or_(*_contains_element(Book.categories, genres)),
            has_cover(),
            or_(Book.last_accessed >= week_ago, Book.usage_count > 0),
        )
        .order_by(
            Book.usage_count.desc(),
            Book.last_accessed.desc().nulls_last(),
            Book.average_rating.desc().nulls_last(),
            Book.id.asc(),
        )
        .limit(limit * OVERFETCH_FACTOR)
        .all()
    )


def get_continue_reading_books(db: Session, user_id: UUID, limit: int) -> List[Book]:
    ids = _shelf_book_ids(db, [user_id], [ShelfStatus.CURRENTLY_READING])
    return [b for b in _books_by_ids(db, ids) if b.thumbnail_url][: limit * OVERFETCH_FACTOR]


def get_friends_books(db: Session, user_id: UUID, limit: int) -> List[Book]:
    """Books the people a user follows liked, favorited or rated 4+."""
    friend_ids = [row.followed_id for row in db.query(Follow).filter(Follow.follower_id == user_id).all()]
    if not friend_ids:
        return []

    own = set(_shelf_book_ids(db, [user_id]))
    liked = _shelf_book_ids(db, friend_ids, [ShelfStatus.LIKED, ShelfStatus.FAVORITE, ShelfStatus.TOP])
    rated = [
        row.book_id
        for row in db.query(UserBookStatusModel)
        .filter(
            UserBookStatusModel.user_id.in_(friend_ids),
            UserBookStatusModel.rating >= FRIEND_MIN_RATING,
        )
        .order_by(UserBookStatusModel.created_at.asc(), UserBookStatusModel.id.asc())
        .all()
    ]
    candidate_ids = []
    for book_id in liked + rated:
        if book_id not in own and book_id not in candidate_ids:
            candidate_ids.append(book_id)
    if not candidate_ids:
        return []
    return (
        db.query(Book)
        .filter(Book.id.in_(candidate_ids), has_cover())
        .order_by(Book.id.asc())
        .limit(limit * OVERFETCH_FACTOR)
        .all()
    )


FEED_LOOKUPS: Dict[FeedType, Callable[[Session, UUID, int], List[Book]]] = {
    FeedType.RECOMMENDED: get_recommended_books,
    FeedType.FAVORITES: get_favorites_books,
    FeedType.AUTHORS: get_author_books,
    FeedType.GENRES: get_genre_books,
    FeedType.CONTINUE_READING: get_continue_reading_books,
    FeedType.FRIENDS: get_friends_books,
}

from typing import Iterable, List, Optional
import logging
import uuid as uuid_lib

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from bookfeed.core.auth import get_current_user
from bookfeed.core.config import settings
from bookfeed.database import get_db
from bookfeed.models import Book, User
from bookfeed.schemas.feed import FeedBook, FeedResponse
from bookfeed.services.feed_engine import FeedAssembler, is_displayable, title_author_key
from bookfeed.services.feed_lookups import FEED_LOOKUPS, FeedType
from bookfeed.utils.instrumentation import log_event
from bookfeed.utils.timing import now_ms, log_elapsed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feed", tags=["feed"])


def resolve_limit(feed_type: FeedType, limit: Optional[int]) -> int:
    """Apply the per-type default and server-side cap."""
    if feed_type == FeedType.ONBOARDING:
        default, cap = settings.ONBOARDING_DEFAULT_LIMIT, settings.ONBOARDING_MAX_LIMIT
    else:
        default, cap = settings.FEED_DEFAULT_LIMIT, settings.FEED_MAX_LIMIT
    return min(limit or default, cap)


def to_feed_book(book: Book) -> FeedBook:
    authors = list(book.authors or [])
    return FeedBook(
        id=str(book.id),
        title=book.title or "Unknown Title",
        author=authors[0] if authors else "Unknown Author",
        authors=authors,
        description=book.description or "",
        published_date=book.published_date or "",
        cover=book.cover_url or settings.FEED_COVER_PLACEHOLDER_URL,
        average_rating=book.average_rating,
        ratings_count=book.ratings_count,
        page_count=book.page_count,
        categories=list(book.categories or []),
        publisher=book.publisher,
        isbn=book.isbn,
        isbn13=book.isbn_13,
        open_library_id=book.open_library_id,
        isbndb_id=book.isbndb_id,
        external_id=book.external_id,
    )


def to_feed_books(books: Iterable[Book], limit: int) -> List[FeedBook]:
    """Drop undisplayable books and title+author duplicates, then cut to limit."""
    seen = set()
    out: List[FeedBook] = []
    for book in books:
        if not is_displayable(book):
            continue
        key = title_author_key(book)
        if key in seen:
            continue
        seen.add(key)
        out.append(to_feed_book(book))
        if len(out) >= limit:
            break
    return out


@router.get("/personalized", response_model=FeedResponse, response_model_exclude_none=True)
def get_personalized_feed(
    feed_type_raw: str = Query("recommended", alias="type"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Personalized book carousels for the authenticated user.

    Only `type=onboarding` runs the tiered feed engine and returns pagination
    fields; the other types are single-query lookups. Unknown types behave
    like `recommended`.
    """
    t0 = now_ms()
    request_id = str(uuid_lib.uuid4())
    feed_type = FeedType.parse(feed_type_raw)
    limit = resolve_limit(feed_type, limit)
    user_id = user.id

    logger.info(
        "[FEED] req_id=%s user=%s type=%s resolved=%s page=%s limit=%s",
        request_id, user_id, feed_type_raw, feed_type.value, page, limit,
    )

    if feed_type == FeedType.ONBOARDING:
        feed_page = FeedAssembler(db).assemble(user_id, page, limit)
        books = to_feed_books(feed_page.items, limit)
        response = FeedResponse(
            books=books,
            type=feed_type_raw,
            count=len(books),
            page=feed_page.page,
            has_more=feed_page.has_more,
            total=feed_page.total,
        )
    else:
        try:
            raw_books = FEED_LOOKUPS[feed_type](db, user_id, limit)
        except Exception as e:
            logger.exception("[FEED] req_id=%s user=%s type=%s lookup failed", request_id, user_id, feed_type_raw)
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to fetch personalized books", "details": str(e) or type(e).__name__},
            )
        books = to_feed_books(raw_books, limit)
        response = FeedResponse(books=books, type=feed_type_raw, count=len(books))

    if settings.DEBUG:
        t1 = log_elapsed(t0, f"req_id={request_id} user={user_id} feed_{feed_type.value}", logger.debug)
    else:
        t1 = now_ms()

    logged = log_event(
        db=db,
        event_name="feed_impression",
        user_id=user_id,
        properties={
            "type": feed_type.value,
            "page": page,
            "count": len(books),
            "book_ids": [b.id for b in books],
        },
        request_id=request_id,
    )
    if logged:
        db.commit()

    if settings.DEBUG:
        log_elapsed(t1, f"req_id={request_id} user={user_id} event_log_commit", logger.debug)

    return response

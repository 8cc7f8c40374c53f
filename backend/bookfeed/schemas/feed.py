from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List


class FeedBook(BaseModel):
    """A book as rendered in a feed carousel (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str
    author: str  # primary author
    authors: List[str]
    description: str = ""
    published_date: str = ""
    cover: str
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    page_count: Optional[int] = None
    categories: List[str] = []
    publisher: Optional[str] = None
    # Raw catalog identifiers for cross-referencing
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    open_library_id: Optional[str] = None
    isbndb_id: Optional[str] = None
    external_id: Optional[str] = None


class FeedResponse(BaseModel):
    """
    Personalized feed envelope.

    page / has_more / total are only set when the tiered onboarding engine ran.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    books: List[FeedBook]
    type: str
    count: int
    page: Optional[int] = None
    has_more: Optional[bool] = None
    total: Optional[int] = None

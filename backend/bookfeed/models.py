from sqlalchemy import Column, String, Integer, Text, DateTime, Float, ForeignKey, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
import sqlalchemy as sa
from bookfeed.database import Base


class ShelfStatus(str, enum.Enum):
    FAVORITE = "favorite"
    TOP = "top"
    LIKED = "liked"
    READ = "read"
    CURRENTLY_READING = "currently_reading"
    WANT_TO_READ = "want_to_read"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    auth_user_id = Column(String, unique=True, index=True, nullable=True)  # Session provider subject
    email = Column(String, unique=True, index=True, nullable=True)
    username = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    preference = relationship("UserPreference", back_populates="user", uselist=False)


class Book(Base):
    """Catalog entry. Read-only from the feed engine's perspective."""
    __tablename__ = "books"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_id = Column(String, nullable=True)  # Google Books volume id
    isbn = Column(String, nullable=True)
    isbn_13 = Column(String, nullable=True)
    open_library_id = Column(String, nullable=True)
    isbndb_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    authors = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    published_date = Column(String, nullable=True)  # raw "YYYY", "YYYY-MM" or "YYYY-MM-DD"
    average_rating = Column(Float, nullable=True)
    ratings_count = Column(Integer, nullable=True)
    page_count = Column(Integer, nullable=True)
    categories = Column(JSON, nullable=True)
    publisher = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    small_thumbnail_url = Column(String, nullable=True)
    medium_cover_url = Column(String, nullable=True)
    large_cover_url = Column(String, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    last_accessed = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def primary_author(self) -> str:
        return (self.authors or [""])[0] or ""

    @property
    def cover_url(self):
        """First available cover size, smallest first."""
        return (
            self.thumbnail_url
            or self.small_thumbnail_url
            or self.medium_cover_url
            or self.large_cover_url
        )


class UserPreference(Base):
    """
    Onboarding choices and behavior-derived preferences for one user.

    `onboarding` holds {"genres": [...], "favoriteAuthors": [...], "completedAt": ...}.
    `implicit_preferences` holds {"genreWeights": ...}; the weights arrive as an
    object, a list of [genre, weight] pairs, or a list of {genre, weight} records
    depending on which collaborator wrote them.
    """
    __tablename__ = "user_preferences"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False)
    username = Column(String, nullable=True, index=True)
    onboarding = Column(JSON, nullable=True)
    implicit_preferences = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="preference")


class UserBookStatusModel(Base):
    """
    Shelf membership for a user-book pair.
    A book can sit on several shelves at once (e.g. read + favorite), so the
    status is part of the unique key.
    """
    __tablename__ = "user_book_status"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Uuid(as_uuid=True), ForeignKey("books.id"), nullable=False, index=True)
    status = Column(String, nullable=False)  # one of ShelfStatus values
    rating = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'book_id', 'status', name='uq_user_book_status_user_book_status'),
    )


class Follow(Base):
    __tablename__ = "follows"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    follower_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    followed_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('follower_id', 'followed_id', name='uq_follows_follower_followed'),
    )


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    event_name = Column(String, nullable=False, index=True)
    properties = Column(JSON, nullable=True)
    request_id = Column(String, nullable=True)
    session_id = Column(String, nullable=True)

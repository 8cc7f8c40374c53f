"""Pytest configuration for backend tests."""
import sys
import os
import uuid
from pathlib import Path
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Import database components
from bookfeed.database import Base, get_db, json_serializer

# Import the entire models module to ensure all models are registered with Base.metadata
# This must happen before create_all() so that all table definitions are available
import bookfeed.models  # noqa: F401
from bookfeed.models import Book, User, UserPreference, UserBookStatusModel, Follow


# Models use portable column types (Uuid, JSON), so an in-memory SQLite database
# is the default. Set TEST_DATABASE_URL to run the suite against Postgres.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")


@pytest.fixture(scope="session")
def engine():
    """Create a test database engine with all tables."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        test_engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            json_serializer=json_serializer,
        )

        # pysqlite needs its own transaction handling disabled for SAVEPOINT to work
        @event.listens_for(test_engine, "connect")
        def do_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(test_engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN")
    else:
        test_engine = create_engine(
            TEST_DATABASE_URL,
            pool_pre_ping=True,
            json_serializer=json_serializer,
        )

    # Debug assertion: verify tables are registered
    if not Base.metadata.tables:
        raise RuntimeError(
            "No tables registered in Base.metadata. "
            "Did you import bookfeed.models? All model classes must be imported before create_all()."
        )

    Base.metadata.create_all(bind=test_engine)

    yield test_engine

    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Session:
    """
    Create a database session for each test.

    The outer transaction is rolled back after each test. Commits and rollbacks
    issued by application code operate on savepoints inside it.
    """
    connection = engine.connect()
    transaction = connection.begin()

    session = Session(
        bind=connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# ----------------------------
# Data factories
# ----------------------------
@pytest.fixture
def make_user(db: Session):
    def _make_user(**kwargs) -> User:
        kwargs.setdefault("auth_user_id", str(uuid.uuid4()))
        user = User(**kwargs)
        db.add(user)
        db.commit()
        return user
    return _make_user


@pytest.fixture
def make_book(db: Session):
    counter = {"n": 0}

    def _make_book(**kwargs) -> Book:
        counter["n"] += 1
        kwargs.setdefault("title", f"Book {counter['n']}")
        kwargs.setdefault("authors", [f"Author {counter['n']}"])
        kwargs.setdefault("categories", ["General"])
        kwargs.setdefault("thumbnail_url", f"https://covers.example.com/{counter['n']}.jpg")
        kwargs.setdefault("average_rating", 4.0)
        kwargs.setdefault("ratings_count", 100)
        book = Book(**kwargs)
        db.add(book)
        db.commit()
        return book
    return _make_book


@pytest.fixture
def set_preferences(db: Session):
    def _set_preferences(user: User, onboarding=None, implicit=None) -> UserPreference:
        pref = UserPreference(user_id=user.id, onboarding=onboarding, implicit_preferences=implicit)
        db.add(pref)
        db.commit()
        return pref
    return _set_preferences


@pytest.fixture
def shelve(db: Session):
    def _shelve(user: User, book: Book, status: str, rating=None) -> UserBookStatusModel:
        row = UserBookStatusModel(user_id=user.id, book_id=book.id, status=status, rating=rating)
        db.add(row)
        db.commit()
        return row
    return _shelve


@pytest.fixture
def follow(db: Session):
    def _follow(follower: User, followed: User) -> Follow:
        row = Follow(follower_id=follower.id, followed_id=followed.id)
        db.add(row)
        db.commit()
        return row
    return _follow


# ----------------------------
# HTTP
# ----------------------------
@pytest.fixture
def app_client(db: Session):
    """TestClient sharing the test session, without an auth override."""
    from bookfeed.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def current_user(make_user) -> User:
    return make_user(email="reader@example.com")


@pytest.fixture
def client(app_client, current_user):
    """TestClient authenticated as current_user."""
    from bookfeed.core.auth import get_current_user
    from bookfeed.main import app

    app.dependency_overrides[get_current_user] = lambda: current_user
    return app_client

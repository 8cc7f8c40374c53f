"""Tests for the tier queries against a real database session."""
import pytest

from bookfeed.services.feed_engine import (
    TIER_EXACT,
    TIER_POPULAR,
    TIER_RELATED,
    FeedAssembler,
    TieredCandidateRetriever,
)


@pytest.fixture
def mystery_catalog(make_book):
    return {
        "orient": make_book(
            title="Murder on the Orient Express", authors=["Agatha Christie"],
            categories=["Detective and mystery stories"], average_rating=4.2, ratings_count=5000,
        ),
        "gone_girl": make_book(
            title="Gone Girl", authors=["Gillian Flynn"],
            categories=["Fiction / Thrillers / Suspense"], average_rating=4.1, ratings_count=9000,
        ),
        "spy": make_book(
            title="Tinker Tailor Soldier Spy", authors=["John le Carre"],
            categories=["Espionage"], average_rating=3.9, ratings_count=800,
        ),
        "pride": make_book(
            title="Pride and Prejudice", authors=["Jane Austen"],
            categories=["Romance"], average_rating=4.5, ratings_count=20000,
        ),
        "no_cover": make_book(
            title="The Hound of the Baskervilles", authors=["Arthur Conan Doyle"],
            categories=["Mystery"], thumbnail_url=None, average_rating=4.9, ratings_count=100,
        ),
        "obscure": make_book(
            title="Unloved Romance", authors=["Nobody Known"],
            categories=["Romance"], average_rating=3.0, ratings_count=100,
        ),
        "few_ratings": make_book(
            title="Hidden Gem", authors=["New Writer"],
            categories=["Romance"], average_rating=4.8, ratings_count=3,
        ),
    }


def test_mystery_reader_gets_tiers_in_order(db, make_user, set_preferences, mystery_catalog):
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    assert results.executed == [TIER_EXACT, TIER_RELATED, TIER_POPULAR]
    assert results.failed == []
    assert [b.title for b in results.tier1] == ["Murder on the Orient Express", "Gone Girl"]
    assert [b.title for b in results.tier2] == ["Tinker Tailor Soldier Spy"]
    tier3_titles = [b.title for b in results.tier3]
    assert tier3_titles[0] == "Pride and Prejudice"
    assert "Unloved Romance" not in tier3_titles
    assert "Hidden Gem" not in tier3_titles


def test_books_without_cover_never_match(db, make_user, set_preferences, mystery_catalog):
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    page = FeedAssembler(db).assemble(user.id, 1, 20)

    assert "The Hound of the Baskervilles" not in [b.title for b in page.items]


def test_assembled_page_puts_matches_before_popular_books(db, make_user, set_preferences, mystery_catalog):
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    page = FeedAssembler(db).assemble(user.id, 1, 20)

    titles = [b.title for b in page.items]
    assert titles[:3] == ["Murder on the Orient Express", "Gone Girl", "Tinker Tailor Soldier Spy"]
    assert page.tiers[:3] == [TIER_EXACT, TIER_EXACT, TIER_RELATED]
    assert titles[3:] == ["Pride and Prejudice"]
    assert len(set(b.id for b in page.items)) == len(page.items)
    assert page.has_more is False


def test_genre_matching_is_case_insensitive_substring(db, make_user, set_preferences, make_book):
    match = make_book(title="Shouty", categories=["FICTION / MYSTERY & DETECTIVE / GENERAL"], average_rating=2.0)
    make_book(title="Unrelated", categories=["Cooking"], average_rating=2.0)
    user = make_user()
    set_preferences(user, onboarding={"genres": ["mystery"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    assert [b.id for b in results.tier1] == [match.id]


def test_favorite_authors_alone_drive_tier1(db, make_user, set_preferences, mystery_catalog):
    user = make_user()
    set_preferences(user, onboarding={"genres": [], "favoriteAuthors": ["Agatha Christie"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    # No genres means no related-genre pass
    assert results.executed == [TIER_EXACT, TIER_POPULAR]
    assert [b.title for b in results.tier1] == ["Murder on the Orient Express"]


def test_non_ascii_author_names_match(db, make_user, set_preferences, make_book):
    book = make_book(title="Cien anos de soledad", authors=["Gabriel García Márquez"], average_rating=2.0)
    user = make_user()
    set_preferences(user, onboarding={"favoriteAuthors": ["Márquez"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    assert [b.id for b in results.tier1] == [book.id]


def test_no_preferences_runs_popular_tier_only(db, make_user, mystery_catalog):
    user = make_user()

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    assert results.executed == [TIER_POPULAR]
    assert results.tier1 == []
    assert results.tier2 == []
    assert len(results.tier3) == 4


def test_popular_tier_ranks_by_rating_then_count(db, make_book):
    low = make_book(title="A", average_rating=4.0, ratings_count=50)
    high_count = make_book(title="B", average_rating=4.0, ratings_count=500)
    top = make_book(title="C", average_rating=4.7, ratings_count=20)

    popular = TieredCandidateRetriever(db).fetch_popular(10)

    assert [b.id for b in popular] == [top.id, high_count.id, low.id]


def test_tier_fetch_respects_size(db, make_book):
    for i in range(8):
        make_book(title=f"Popular {i}")
    assert len(TieredCandidateRetriever(db).fetch_popular(5)) == 5


class BrokenExactRetriever(TieredCandidateRetriever):
    def fetch_exact(self, genre_labels, tokens, size):
        raise RuntimeError("tier 1 exploded")


def test_failed_tier_is_recorded_and_others_still_run(db, make_user, set_preferences, mystery_catalog):
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    results = BrokenExactRetriever(db).retrieve(user.id, 1, 10)

    assert results.failed == [TIER_EXACT]
    assert results.tier1 == []
    assert [b.title for b in results.tier2] == ["Tinker Tailor Soldier Spy"]
    assert results.tier3
    assert not results.all_failed


def test_unreadable_preferences_fall_back_to_popular(db, make_user, mystery_catalog):
    class BrokenResolver:
        def resolve(self, user_id):
            raise RuntimeError("preference store down")

    user = make_user()
    results = TieredCandidateRetriever(db, resolver=BrokenResolver()).retrieve(user.id, 1, 10)

    assert results.executed == [TIER_POPULAR]
    assert len(results.tier3) == 4


def test_popular_tier_tops_up_past_books_already_matched(db, make_user, set_preferences, make_book):
    # The matches are also the most popular books in the catalog
    mysteries = [
        make_book(title=f"Mystery {i}", categories=["Mystery"], average_rating=4.8, ratings_count=1000)
        for i in range(5)
    ]
    for i in range(100):
        make_book(title=f"Cookbook {i}", categories=["Cooking"])
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    mystery_ids = {b.id for b in mysteries}
    assert {b.id for b in results.tier1} == mystery_ids
    assert len(results.tier3) == 60
    assert not mystery_ids & {b.id for b in results.tier3}

    page = FeedAssembler(db).assemble(user.id, 1, 10)
    assert page.total == 65
    assert page.has_more is True


def test_related_tier_skips_exact_matches(db, make_user, set_preferences, make_book):
    both = make_book(title="Spy Mystery", categories=["Mystery", "Espionage"], average_rating=4.9)
    spies = [make_book(title=f"Spy {i}", categories=["Espionage"]) for i in range(3)]
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    assert [b.id for b in results.tier1] == [both.id]
    assert {b.id for b in results.tier2} == {b.id for b in spies}


def test_exact_tier_breaks_ties_by_newest_publication(db, make_user, set_preferences, make_book):
    undated = make_book(title="Undated", categories=["Mystery"], published_date=None)
    older = make_book(title="Older", categories=["Mystery"], published_date="1999")
    newer = make_book(title="Newer", categories=["Mystery"], published_date="2015-06")
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    assert [b.id for b in results.tier1] == [newer.id, older.id, undated.id]


def test_related_tier_ranks_by_rating_then_count(db, make_user, set_preferences, make_book):
    few = make_book(title="Few", categories=["Espionage"], average_rating=4.0, ratings_count=50)
    many = make_book(title="Many", categories=["Espionage"], average_rating=4.0, ratings_count=500)
    best = make_book(title="Best", categories=["Espionage"], average_rating=4.5, ratings_count=10)
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})

    results = TieredCandidateRetriever(db).retrieve(user.id, 1, 10)

    assert [b.id for b in results.tier2] == [best.id, many.id, few.id]


def test_enough_exact_matches_fill_the_first_page(db, make_user, set_preferences, make_book):
    for i in range(12):
        make_book(title=f"Mystery {i}", categories=["Mystery"], average_rating=3.0)
    for i in range(20):
        make_book(title=f"Cookbook {i}", categories=["Cooking"], average_rating=4.9)
    user = make_user()
    set_preferences(user, onboarding={"genres": ["Mystery"]})
    assembler = FeedAssembler(db)

    first = assembler.assemble(user.id, 1, 10)
    second = assembler.assemble(user.id, 2, 10)

    assert first.tiers == [TIER_EXACT] * 10
    assert second.tiers == [TIER_EXACT] * 2 + [TIER_POPULAR] * 8

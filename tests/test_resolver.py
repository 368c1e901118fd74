"""Tests for the MediaResolver facade.

Covers the three call shapes against the in-memory catalog: the search
flow and its retries, batch context scoping, the no-image rule and the
shape of results.
"""

from __future__ import annotations

import threading

import pytest

from media_resolver.catalog import ImageSet, MediaType
from media_resolver.config import Config
from media_resolver.llm.classifier import CollectionProfile
from media_resolver.resolver import MatchMethod, MediaResolver


@pytest.fixture
def library(catalog, movie, tv, image):
    """A small catalog with the titles most tests resolve."""
    inception = movie(27205, "Inception", 2010, popularity=90, vote_count=35000, vote_average=8.37)
    catalog.add("Inception", inception)
    catalog.add_details(
        inception,
        genres=["Action", "Science Fiction"],
        directors=["Christopher Nolan"],
        cast=[
            "Leonardo DiCaprio",
            "Joseph Gordon-Levitt",
            "Elliot Page",
            "Tom Hardy",
            "Ken Watanabe",
            "Cillian Murphy",
        ],
        runtime_minutes=148,
    )
    catalog.add_images(
        inception,
        ImageSet(
            backdrops=[image("/inc-fr.jpg", "fr", 9.0), image("/inc-en.jpg", "en", 6.0)],
            posters=[image("/inc-poster.jpg", None, 5.0)],
        ),
    )

    catalog.add(
        "The Matrix",
        movie(603, "The Matrix", 1999, popularity=80, vote_count=25000),
        movie(624860, "The Matrix Resurrections", 2021),
    )
    catalog.add(
        "Spider-Man Homecoming",
        movie(315635, "Spider-Man: Homecoming", 2017, popularity=70, vote_count=21000),
    )
    catalog.add("Arrival", movie(329865, "Arrival", 2016))
    catalog.add("Sicario", movie(273481, "Sicario", 2015))
    catalog.add("Dune", movie(841, "Dune", 1984, popularity=30, vote_count=400))
    catalog.add("The Bear", tv(136315, "The Bear", 2022, popularity=60, vote_count=900))
    return catalog


@pytest.fixture
def resolver(library):
    return MediaResolver(library, config=Config())


# Single resolution


def test_resolve_builds_full_result(resolver):
    result = resolver.resolve("Inception")

    assert result is not None
    assert result.title == "Inception"
    assert result.release_year == 2010
    assert result.catalog_id == 27205
    assert result.media_type == MediaType.MOVIE
    assert result.rating == 8.4
    assert result.vote_count == 35000
    assert result.match_confidence == 100
    assert result.match_method == MatchMethod.EXACT
    assert result.genres == ["Action", "Science Fiction"]
    assert result.director == "Christopher Nolan"
    assert len(result.cast) == 5
    assert result.runtime_minutes == 148
    assert result.backdrop_url == "https://image.tmdb.org/t/p/w780/inc-en.jpg"
    assert result.poster_url == "https://image.tmdb.org/t/p/w500/inc-poster.jpg"


def test_resolve_falls_back_to_search_hit_images(resolver):
    result = resolver.resolve("Arrival")
    assert result is not None
    assert result.poster_url == "https://image.tmdb.org/t/p/w500/poster-329865.jpg"
    assert result.backdrop_url is None


def test_explicit_year_is_exact(resolver):
    result = resolver.resolve("Inception (2010)")
    assert result.match_method == MatchMethod.EXACT


def test_year_hint_filters_search(resolver, library):
    assert resolver.resolve("The Matrix", year_hint=1999).catalog_id == 603
    assert ("search", "The Matrix", MediaType.MOVIE, 1999) in library.calls


def test_year_hint_wins_over_text_year(resolver, library):
    result = resolver.resolve("The Matrix (2021)", year_hint=1999)
    assert result.catalog_id == 603
    assert result.match_method == MatchMethod.EXACT


def test_no_match_is_none(resolver):
    assert resolver.resolve("A Film Nobody Made") is None


def test_blank_query_is_none(resolver, library):
    assert resolver.resolve("   ") is None
    assert library.calls == []


def test_no_image_invariant(catalog, movie):
    bare = movie(1, "Imageless", 2020, poster_path=None, backdrop_path=None)
    catalog.add("Imageless", bare)
    resolver = MediaResolver(catalog)

    assert resolver.resolve("Imageless") is None
    assert ("images", MediaType.MOVIE, 1, "en") in catalog.calls


def test_image_lookup_failure_uses_search_hit_paths(library, resolver):
    library.failing.add("images")
    result = resolver.resolve("Inception")
    assert result is not None
    assert result.poster_url == "https://image.tmdb.org/t/p/w500/poster-27205.jpg"


def test_details_failure_still_resolves(library, resolver):
    library.failing.add("details")
    result = resolver.resolve("Inception")
    assert result is not None
    assert result.genres == []
    assert result.director is None


def test_search_failure_is_no_match(library, resolver):
    library.failing.add("search")
    assert resolver.resolve("Inception") is None


def test_not_configured(catalog, movie):
    catalog.configured = False
    catalog.add("Inception", movie(1, "Inception", 2010))
    resolver = MediaResolver(catalog)

    assert not resolver.is_available()
    assert resolver.resolve("Inception") is None
    assert resolver.resolve_batch(["Inception", "Dune"]) == {"Inception": None, "Dune": None}
    assert resolver.resolve_with_candidates("Inception").candidates == []
    assert catalog.calls == []


# Search flow


def test_literal_retry_keeps_stripped_words(catalog, movie):
    catalog.add("Scary Movie", movie(4247, "Scary Movie", 2000))
    resolver = MediaResolver(catalog)

    result = resolver.resolve("Scary Movie")

    assert result is not None
    assert result.catalog_id == 4247
    assert [c[1] for c in catalog.searches()][:2] == ["Scary", "Scary Movie"]


def test_year_filter_retry(catalog, movie):
    # Catalog dates the film a year later than the query
    catalog.add("Amelie", movie(194, "Amelie", 2002))
    resolver = MediaResolver(catalog)

    result = resolver.resolve("Amelie 2001")

    assert result is not None
    assert result.match_method == MatchMethod.EXACT
    assert ("search", "Amelie", MediaType.MOVIE, None) in catalog.calls


def test_tv_fallback(resolver, library):
    result = resolver.resolve("The Bear")
    assert result is not None
    assert result.media_type == MediaType.TV
    kinds = [c[2] for c in library.searches()]
    assert kinds[0] == MediaType.MOVIE
    assert kinds[-1] == MediaType.TV


def test_tv_fallback_can_be_disabled(library):
    config = Config()
    config.catalog.tv_fallback = False
    assert MediaResolver(library, config=config).resolve("The Bear") is None


def test_tv_query_skips_movie_search(resolver, library):
    result = resolver.resolve("The Bear season 2 on Hulu")
    assert result is not None
    assert result.catalog_id == 136315
    assert {c[2] for c in library.searches()} == {MediaType.TV}
    assert library.searches()[0][1] == "The Bear"


def test_candidate_limit(catalog, movie):
    config = Config()
    config.catalog.max_movie_candidates = 1
    catalog.add("Heat", movie(1, "Heatwave", 2010), movie(2, "Heat", 1995))
    config.catalog.tv_fallback = False
    assert MediaResolver(catalog, config=config).resolve("Heat") is None


# Batches


def test_end_to_end_batch(resolver):
    results = resolver.resolve_batch(["Inception 2010", "The Matrix", "Spider-Man Homecoming"])

    assert set(results) == {"Inception 2010", "The Matrix", "Spider-Man Homecoming"}
    assert all(r is not None for r in results.values())
    assert all(r.match_confidence >= 80 for r in results.values())

    assert results["Inception 2010"].match_method == MatchMethod.EXACT
    assert results["The Matrix"].catalog_id == 603
    assert results["The Matrix"].match_method in (MatchMethod.BATCH_CONTEXT, MatchMethod.FUZZY)
    assert results["Spider-Man Homecoming"].catalog_id == 315635
    assert results["Spider-Man Homecoming"].match_method in (
        MatchMethod.BATCH_CONTEXT,
        MatchMethod.FUZZY,
    )


def _villeneuve_batch(stub_classifier):
    return stub_classifier(
        CollectionProfile(media_type="movie", year_min=2015, year_max=2016, confidence=0.9)
    )


def test_batch_context_rejects_out_of_range_title(library, stub_classifier):
    resolver = MediaResolver(library, classifier=_villeneuve_batch(stub_classifier))

    results = resolver.resolve_batch(["Arrival", "Sicario", "Dune"])

    assert results["Arrival"] is not None
    assert results["Sicario"] is not None
    assert results["Dune"] is None


def test_batch_context_does_not_leak(library, stub_classifier):
    resolver = MediaResolver(library, classifier=_villeneuve_batch(stub_classifier))

    assert resolver.resolve_batch(["Arrival", "Sicario", "Dune"])["Dune"] is None

    result = resolver.resolve("Dune")
    assert result is not None
    assert result.catalog_id == 841


def test_batch_primary_year_rejects_other_years(catalog, movie, stub_classifier):
    catalog.add("Dune", movie(438631, "Dune", 2021))
    catalog.add("Wicked", movie(402431, "Wicked", 2024))
    classifier = stub_classifier(
        CollectionProfile(media_type="movie", primary_year=2024, confidence=0.9)
    )
    resolver = MediaResolver(catalog, classifier=classifier)

    results = resolver.resolve_batch(["Dune", "Wicked"])

    assert results["Dune"] is None
    assert results["Wicked"].catalog_id == 402431
    assert results["Wicked"].match_method == MatchMethod.BATCH_CONTEXT


def test_single_title_batch_then_resolve(resolver):
    first = resolver.resolve_batch(["The Matrix"])
    second = resolver.resolve("Inception")
    assert first["The Matrix"] is not None
    assert second.match_method == MatchMethod.EXACT


def test_trusted_tv_batch_routes_to_tv(catalog, movie, tv, stub_classifier):
    catalog.add("Shogun", movie(1, "Shogun", 1980), tv(126308, "Shogun", 2024))
    catalog.add("The Bear", tv(136315, "The Bear", 2022))
    classifier = stub_classifier(CollectionProfile(media_type="tv", confidence=0.8))
    resolver = MediaResolver(catalog, classifier=classifier)

    results = resolver.resolve_batch(["Shogun", "The Bear"])

    assert results["Shogun"].media_type == MediaType.TV
    assert results["Shogun"].catalog_id == 126308


def test_duplicate_titles_resolved_once(resolver, library):
    results = resolver.resolve_batch(["Inception", "Inception"])
    assert list(results) == ["Inception"]


def test_batch_scope_releases_lock_on_error(resolver):
    with pytest.raises(RuntimeError):
        with resolver.batch_scope(["Inception", "Arrival"]):
            raise RuntimeError("boom")

    assert resolver._batch_lock.acquire(blocking=False)
    resolver._batch_lock.release()


def test_batches_are_serialized(resolver):
    entered = threading.Event()
    release = threading.Event()
    order: list[str] = []

    def first_batch():
        with resolver.batch_scope(["Inception", "Arrival"]):
            order.append("first-in")
            entered.set()
            release.wait(timeout=5)
            order.append("first-out")

    def second_batch():
        entered.wait(timeout=5)
        with resolver.batch_scope(["Sicario", "Dune"]):
            order.append("second-in")

    t1 = threading.Thread(target=first_batch)
    t2 = threading.Thread(target=second_batch)
    t1.start()
    t2.start()
    entered.wait(timeout=5)
    release.set()
    t1.join(timeout=5)
    t2.join(timeout=5)

    assert order == ["first-in", "first-out", "second-in"]


# Candidates mode


def test_resolve_with_candidates_mixes_movies_and_tv(catalog, movie, tv):
    catalog.add(
        "Shogun",
        movie(1, "Shogun", 1980, popularity=3, vote_count=200),
        tv(126308, "Shogun", 2024, popularity=120, vote_count=2000),
    )
    resolver = MediaResolver(catalog)

    ranking = resolver.resolve_with_candidates("Shogun")

    assert {r.candidate.media_type for r in ranking.candidates} == {MediaType.MOVIE, MediaType.TV}
    assert ranking.best_match.candidate.catalog_id == 126308


def test_resolve_with_candidates_max_results(catalog, movie):
    catalog.add("Heat", *(movie(i, "Heat", 1980 + i) for i in range(1, 9)))
    ranking = MediaResolver(catalog).resolve_with_candidates("Heat", max_results=2)
    assert len(ranking.candidates) == 2


def test_resolve_with_candidates_drops_year_filter_when_empty(catalog, movie):
    catalog.add("Amelie", movie(194, "Amelie", 2002))
    ranking = MediaResolver(catalog).resolve_with_candidates("Amelie 2001")
    assert ranking.best_match.candidate.catalog_id == 194


def test_result_to_dict(resolver):
    data = resolver.resolve("Inception").to_dict()
    assert data["media_type"] == "movie"
    assert data["match_method"] == "exact"
    assert data["match_confidence"] == 100
    assert data["cast"][0] == "Leonardo DiCaprio"

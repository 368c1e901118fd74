"""Tests for candidate ranking (disambiguation mode)."""

from __future__ import annotations

import pytest

from media_resolver.config import RankingConfig
from media_resolver.normalize import QueryNormalizer
from media_resolver.ranker import CandidateRanker, ConfidenceLevel


@pytest.fixture
def ranker(catalog):
    return CandidateRanker(catalog, RankingConfig())


@pytest.fixture
def normalize():
    return QueryNormalizer().normalize


@pytest.fixture
def dunes(catalog, movie):
    new = movie(438631, "Dune", 2021, popularity=80, vote_count=10000)
    old = movie(841, "Dune", 1984, popularity=30, vote_count=3000)
    catalog.add_details(new, directors=["Denis Villeneuve"])
    catalog.add_details(old, directors=["David Lynch"])
    return new, old


def test_clear_winner_needs_no_confirmation(ranker, normalize, movie):
    real = movie(872585, "Oppenheimer", 2023, popularity=100, vote_count=8000)
    doc = movie(1, "Oppenheimer: The Real Story", 2023, popularity=3, vote_count=5)

    ranking = ranker.rank(normalize("Oppenheimer 2023"), [doc, real])

    assert ranking.best_match is not None
    assert ranking.best_match.candidate is real
    assert ranking.best_match.level == ConfidenceLevel.HIGH
    assert ranking.candidates[1].candidate is doc
    assert ranking.candidates[1].confidence < ranking.best_match.confidence - 0.15
    assert not ranking.needs_user_confirmation


def test_near_tie_needs_confirmation(ranker, normalize, dunes):
    new, old = dunes
    ranking = ranker.rank(normalize("Dune"), [new, old])

    assert [r.candidate for r in ranking.candidates] == [new, old]
    assert ranking.best_match.level == ConfidenceLevel.HIGH
    assert ranking.needs_user_confirmation


def test_year_hint_scores(ranker, normalize, movie):
    new = movie(438631, "Dune", 2021, popularity=10, vote_count=500)
    old = movie(841, "Dune", 1984, popularity=10, vote_count=500)
    ranking = ranker.rank(normalize("Dune 1984"), [new, old])

    assert ranking.best_match.candidate is old
    scores = {r.candidate.catalog_id: r for r in ranking.candidates}
    assert scores[438631].confidence == pytest.approx(0.85)
    assert "year match" in scores[841].signals
    assert any(s.startswith("year mismatch") for s in scores[438631].signals)


def test_creator_hint_separates_candidates(catalog, ranker, normalize, dunes):
    new, old = dunes
    ranking = ranker.rank(normalize("Dune directed by Denis Villeneuve"), [old, new])

    assert ranking.best_match.candidate is new
    assert ranking.candidates[1].confidence == pytest.approx(0.80)
    assert not ranking.needs_user_confirmation
    assert sorted(catalog.detail_ids()) == [841, 438631]


def test_unverifiable_creator_is_neutral(catalog, ranker, normalize, movie):
    film = movie(1, "Heat", 1995, popularity=30, vote_count=500)
    ranked = ranker.rank(normalize("Heat by Michael Mann"), [film]).best_match
    assert ranked.confidence == pytest.approx(1.0)
    assert "creator unverifiable" in ranked.signals


def test_scores_are_clamped(ranker, normalize, movie):
    junk = movie(1, "Completely Unrelated Picture", 1950, popularity=0.1, vote_count=0)
    ranked = ranker.rank(normalize("Dune 2021"), [junk]).best_match

    assert ranked.confidence == 0.0
    assert ranked.level == ConfidenceLevel.LOW


def test_max_results_truncates(ranker, normalize, movie):
    candidates = [movie(i, f"Dune {suffix}", 2000 + i) for i, suffix in enumerate("ABCDEFG")]
    ranking = ranker.rank(normalize("Dune"), candidates, max_results=3)
    assert len(ranking.candidates) == 3


def test_default_max_results(ranker, normalize, movie):
    candidates = [movie(i, "Dune", 2000 + i) for i in range(8)]
    assert len(ranker.rank(normalize("Dune"), candidates).candidates) == 5


def test_no_candidates(ranker, normalize):
    ranking = ranker.rank(normalize("Dune"), [])
    assert ranking.best_match is None
    assert ranking.candidates == []
    assert not ranking.needs_user_confirmation


def test_weak_best_needs_confirmation(ranker, normalize, movie):
    lone = movie(1, "Oppenheimer: The Real Story", 2023, popularity=3, vote_count=5)
    ranking = ranker.rank(normalize("Oppenheimer 2023"), [lone])
    assert ranking.best_match.level == ConfidenceLevel.LOW
    assert ranking.needs_user_confirmation


def test_to_dict(ranker, normalize, dunes):
    data = ranker.rank(normalize("Dune"), list(dunes)).to_dict()
    assert data["best_match"]["catalog_id"] == 438631
    assert data["best_match"]["media_type"] == "movie"
    assert data["best_match"]["level"] == "high"
    assert len(data["candidates"]) == 2
    assert data["needs_user_confirmation"] is True

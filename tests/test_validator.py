"""Tests for the tiered candidate validator.

Each test drives ``TieredValidator`` with hand-built candidates against the
in-memory catalog and checks which tier accepts or rejects them.
"""

from __future__ import annotations

import pytest

from media_resolver.batch_context import (
    BatchContext,
    BatchContextInferencer,
    ContextSource,
    YearRange,
    context_from_profile,
)
from media_resolver.catalog import MediaType
from media_resolver.config import ValidationConfig
from media_resolver.llm.classifier import CollectionProfile
from media_resolver.normalize import QueryNormalizer
from media_resolver.validator import DetailsCache, Tier, TieredValidator, YearBasis


@pytest.fixture
def validator(catalog):
    return TieredValidator(catalog, ValidationConfig())


@pytest.fixture
def normalize():
    return QueryNormalizer().normalize


def batch(confidence: float, years: tuple[int, int] | None = None, **fields) -> BatchContext:
    return BatchContext(
        inferred_year_range=YearRange(*years) if years else None,
        confidence=confidence,
        source=ContextSource.CLASSIFIER,
        **fields,
    )


# Tier ordering and short-circuit


def test_first_passing_candidate_wins_and_tier1_reject_never_fetches_credits(
    catalog, validator, normalize, movie
):
    wrong = movie(1, "Interstellar", 2014)
    right = movie(2, "Inception", 2010)
    catalog.add_details(right, directors=["Christopher Nolan"])

    match = validator.validate(
        normalize("Inception directed by Christopher Nolan"), [wrong, right]
    )

    assert match is not None
    assert match.candidate is right
    assert catalog.detail_ids() == [2]
    assert match.details is not None


def test_later_candidates_not_evaluated(catalog, validator, normalize, movie):
    first = movie(1, "Heat", 1995)
    second = movie(2, "Heat", 1986)
    catalog.add_details(first, directors=["Michael Mann"])
    catalog.add_details(second, directors=["Dick Richards"])

    match = validator.validate(normalize("Heat by Michael Mann"), [first, second])

    assert match is not None
    assert match.candidate is first
    assert catalog.detail_ids() == [1]


def test_no_survivor_is_none(validator, normalize, movie):
    assert validator.validate(normalize("Inception"), [movie(1, "Insomnia", 2002)]) is None
    assert validator.validate(normalize("Inception"), []) is None


# Tier 1


def test_original_title_counts(validator, normalize, movie):
    parasite = movie(496243, "Parasite", 2019, original_title="기생충", original_language="ko")
    verdict = validator.evaluate(
        normalize("기생충"), parasite, BatchContext.empty(), DetailsCache(validator.catalog)
    )
    assert verdict.accepted
    assert verdict.similarity == 1.0


# Tier 2


def test_explicit_year_tolerance(validator, normalize, movie):
    details = DetailsCache(validator.catalog)
    query = normalize("Dune (2021)")
    context = BatchContext.empty()

    assert validator.evaluate(query, movie(1, "Dune", 2021), context, details).accepted
    assert validator.evaluate(query, movie(2, "Dune", 2022), context, details).accepted

    verdict = validator.evaluate(query, movie(3, "Dune", 1984), context, details)
    assert verdict.rejected_by == Tier.YEAR
    assert verdict.year_basis == YearBasis.NONE


def test_explicit_year_basis_reported(validator, normalize, movie):
    match = validator.validate(normalize("Dune 2021"), [movie(1, "Dune", 2021)])
    assert match is not None
    assert match.year_basis == YearBasis.EXPLICIT


def test_undated_candidate_passes_year_tier(validator, normalize, movie):
    match = validator.validate(normalize("Dune 2021"), [movie(1, "Dune", None)])
    assert match is not None
    assert match.year_basis == YearBasis.NONE


def test_trusted_batch_range_rejects_outside_window(validator, normalize, movie):
    context = batch(0.9, years=(2020, 2022))
    query = normalize("Dune")
    details = DetailsCache(validator.catalog)

    # Window is [min - 3, max + 1]
    assert validator.evaluate(query, movie(1, "Dune", 2017), context, details).accepted
    assert validator.evaluate(query, movie(2, "Dune", 2023), context, details).accepted

    too_old = movie(3, "Dune", 2016, vote_count=100)
    verdict = validator.evaluate(query, too_old, context, details)
    assert verdict.rejected_by == Tier.YEAR


def test_batch_range_sets_batch_basis(validator, normalize, movie):
    match = validator.validate(normalize("Dune"), [movie(1, "Dune", 2021)], batch(0.9, (2020, 2022)))
    assert match is not None
    assert match.year_basis == YearBasis.BATCH


@pytest.mark.parametrize("confidence", [0.0, 0.3, 0.5])
def test_low_confidence_context_never_rejects_on_year(validator, normalize, movie, confidence):
    context = batch(confidence, years=(2020, 2022), inferred_year=2021, inferred_region="Korea")
    match = validator.validate(normalize("Dune"), [movie(1, "Dune", 1984, vote_count=100)], context)
    assert match is not None
    assert match.year_basis == YearBasis.NONE


def test_trusted_batch_single_year_gates_like_explicit_year(validator, normalize, movie):
    context = BatchContext(inferred_year=2021, confidence=0.8, source=ContextSource.STATISTICAL)
    details = DetailsCache(validator.catalog)

    verdict = validator.evaluate(normalize("Dune"), movie(1, "Dune", 1984), context, details)
    assert verdict.rejected_by == Tier.YEAR

    verdict = validator.evaluate(normalize("Dune"), movie(2, "Dune", 2021), context, details)
    assert verdict.accepted
    assert verdict.year_basis == YearBasis.BATCH


def test_classifier_primary_year_rejects_distant_release(validator, normalize, movie):
    profile = CollectionProfile(media_type="movie", primary_year=2024, confidence=0.9)
    context = context_from_profile(profile)
    details = DetailsCache(validator.catalog)

    verdict = validator.evaluate(normalize("Dune"), movie(1, "Dune", 2021), context, details)
    assert verdict.rejected_by == Tier.YEAR
    assert verdict.reason == "released 2021, wanted 2024"

    verdict = validator.evaluate(normalize("Wicked"), movie(2, "Wicked", 2025), context, details)
    assert verdict.accepted
    assert verdict.year_basis == YearBasis.BATCH


def test_statistical_single_year_rejects_distant_release(catalog, validator, normalize, movie):
    catalog.add("Barbie", movie(346698, "Barbie", 2023))
    catalog.add("Oppenheimer", movie(872585, "Oppenheimer", 2023))
    context = BatchContextInferencer(catalog).infer(["Barbie", "Oppenheimer"])
    details = DetailsCache(catalog)

    assert context.inferred_year == 2023
    verdict = validator.evaluate(normalize("Dune"), movie(1, "Dune", 2021), context, details)
    assert verdict.rejected_by == Tier.YEAR
    assert validator.evaluate(normalize("Dune"), movie(2, "Dune", 2023), context, details).accepted


def test_spread_batch_is_gated_by_range_not_primary_year(validator, normalize, movie):
    context = batch(0.9, years=(2009, 2017), inferred_year=2010)
    match = validator.validate(normalize("Dune"), [movie(1, "Dune", 2014)], context)
    assert match is not None
    assert match.year_basis == YearBasis.BATCH


def test_high_engagement_classic_bypasses_batch_range(validator, normalize, movie):
    context = batch(0.9, years=(2018, 2020))
    classic = movie(680, "Pulp Fiction", 1994, vote_count=27000)
    obscure = movie(681, "Pulp Fiction", 1994, vote_count=300)

    assert validator.validate(normalize("Pulp Fiction"), [classic], context) is not None
    assert validator.validate(normalize("Pulp Fiction"), [obscure], context) is None


def test_classic_batch_bypasses_range(validator, normalize, movie):
    context = batch(0.9, years=(1950, 1960), is_classic=True)
    match = validator.validate(normalize("Vertigo"), [movie(1, "Vertigo", 1970, vote_count=50)], context)
    assert match is not None


def test_classic_threshold_is_configurable(catalog, normalize, movie):
    strict = TieredValidator(catalog, ValidationConfig(classic_min_votes=100_000))
    context = batch(0.9, years=(2018, 2020))
    classic = movie(680, "Pulp Fiction", 1994, vote_count=27000)
    assert strict.validate(normalize("Pulp Fiction"), [classic], context) is None


# Tier 3


def test_popularity_floor(validator, normalize, movie):
    spam = movie(1, "Inception", 2010, popularity=0.6, vote_count=2)
    modest = movie(2, "Inception", 2010, popularity=0.6, vote_count=40)
    details = DetailsCache(validator.catalog)
    query = normalize("Inception")

    verdict = validator.evaluate(query, spam, BatchContext.empty(), details)
    assert verdict.rejected_by == Tier.POPULARITY
    assert validator.evaluate(query, modest, BatchContext.empty(), details).accepted


# Tier 3.5


def test_protected_title_strictness(validator, normalize, movie):
    homecoming = movie(315635, "Spider-Man: Homecoming", 2017, popularity=80, vote_count=20000)
    origins = movie(999001, "Spiderman Origins", 2010, popularity=3, vote_count=10)
    query = normalize("Spider-Man")
    details = DetailsCache(validator.catalog)

    # Neither query word survives alignment, so the title floor catches it first
    origins_verdict = validator.evaluate(query, origins, BatchContext.empty(), details)
    assert origins_verdict.rejected_by == Tier.TITLE
    assert origins_verdict.similarity < 0.1

    # Passes the general floor but not the stricter franchise one
    homecoming_verdict = validator.evaluate(query, homecoming, BatchContext.empty(), details)
    assert 0.80 <= homecoming_verdict.similarity < 0.90
    assert homecoming_verdict.rejected_by == Tier.PROTECTED
    assert homecoming_verdict.reason.endswith("for 'spider man'")

    assert validator.validate(query, [origins, homecoming]) is None


def test_protected_title_rejects_obscure_knockoff(validator, normalize, movie):
    knockoff = movie(999002, "Spider-Man", 2022, popularity=3, vote_count=10)
    verdict = validator.evaluate(
        normalize("Spider-Man"), knockoff, BatchContext.empty(), DetailsCache(validator.catalog)
    )
    assert verdict.similarity == 1.0
    assert verdict.rejected_by == Tier.PROTECTED


def test_protected_title_accepts_full_franchise_title(validator, normalize, movie):
    homecoming = movie(315635, "Spider-Man: Homecoming", 2017, popularity=80, vote_count=20000)
    match = validator.validate(normalize("Spider-Man Homecoming"), [homecoming])
    assert match is not None
    assert match.similarity == 1.0


# Tier 4


def test_director_mismatch_rejects(catalog, validator, normalize, movie):
    heat = movie(1, "Heat", 1986)
    catalog.add_details(heat, directors=["Dick Richards"])
    verdict = validator.evaluate(
        normalize("Heat directed by Michael Mann"), heat, BatchContext.empty(), DetailsCache(catalog)
    )
    assert verdict.rejected_by == Tier.CREATOR


def test_unavailable_credits_reject_creator_query(catalog, validator, normalize, movie):
    heat = movie(1, "Heat", 1995)
    catalog.failing.add("details")
    assert validator.validate(normalize("Heat by Michael Mann"), [heat]) is None


def test_unavailable_credits_ignored_without_creator(catalog, validator, normalize, movie):
    catalog.failing.add("details")
    assert validator.validate(normalize("Heat"), [movie(1, "Heat", 1995)]) is not None
    assert catalog.detail_ids() == []


def test_actor_must_be_top_billed(catalog, normalize, movie):
    validator = TieredValidator(catalog, ValidationConfig(cast_depth=2))
    film = movie(1, "Collateral", 2004)
    catalog.add_details(film, cast=["Tom Cruise", "Jamie Foxx", "Jada Pinkett Smith"])

    assert validator.validate(normalize("Collateral starring Jamie Foxx"), [film]) is not None
    assert validator.validate(normalize("Collateral with Jada Pinkett Smith"), [film]) is None


# Tier 4'


def test_region_language_mismatch(validator, tv):
    korean_batch = batch(0.9, inferred_region="Korea")
    us_remake = tv(1, "Kingdom", 2019, original_language="en")

    assert validator._check_region(us_remake, korean_batch, 0.82) is not None
    assert validator._check_region(us_remake, korean_batch, 0.9) is None
    assert validator._check_region(tv(2, "Kingdom", 2019, original_language="ko"), korean_batch, 0.82) is None


def test_region_check_skips_movies_and_untrusted_context(validator, movie, tv):
    korean = batch(0.9, inferred_region="Korea")
    assert validator._check_region(movie(1, "Kingdom", 2019), korean, 0.82) is None
    assert validator._check_region(tv(1, "Kingdom", 2019), batch(0.4, inferred_region="Korea"), 0.82) is None


def test_region_check_in_pipeline(validator, normalize, tv):
    context = batch(0.9, inferred_region="UK", inferred_media_type=MediaType.TV)
    match = validator.validate(normalize("The Office"), [tv(2316, "The Office", 2005)], context)
    assert match is not None

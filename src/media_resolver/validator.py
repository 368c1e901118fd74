"""
Tiered candidate validation.

Search hits arrive in the catalog's relevance order and are checked one by
one against a fixed sequence of hard gates. The first candidate that clears
every applicable gate is the match; the rest are never looked at. When no
candidate survives, there is no match: a wrong answer is worse than none.

Gates, in order:

1. title similarity floor (against title and original title)
2. year consistency (explicit year or a trusted batch year, else the batch range)
3. popularity/engagement floor (spam and placeholder entries)
3.5 protected franchise titles (stricter similarity and popularity)
4. creator verification, when the query names a director or actor
4'. language implied by the batch region (TV only, trusted batch only)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from media_resolver.batch_context import BatchContext
from media_resolver.catalog import Catalog, CatalogCandidate, CatalogDetails, MediaType
from media_resolver.config import ValidationConfig
from media_resolver.exceptions import MediaResolverError
from media_resolver.normalize import NormalizedQuery
from media_resolver.similarity import best_title_similarity, normalize_title

log = logging.getLogger(__name__)

# Normalized (see similarity.normalize_title) franchise name fragments
PROTECTED_FRANCHISES = (
    "spider man",
    "batman",
    "superman",
    "justice league",
    "wonder woman",
    "aquaman",
    "avengers",
    "iron man",
    "captain america",
    "black panther",
    "guardians of galaxy",
    "ant man",
    "doctor strange",
    "thor",
    "x men",
    "deadpool",
    "wolverine",
    "star wars",
    "star trek",
    "harry potter",
    "fantastic beasts",
    "lord of rings",
    "hobbit",
    "jurassic park",
    "jurassic world",
    "fast and furious",
    "mission impossible",
    "james bond",
    "transformers",
    "pirates of caribbean",
    "indiana jones",
    "terminator",
    "hunger games",
    "john wick",
    "toy story",
    "despicable me",
    "minions",
    "shrek",
    "ghostbusters",
    "godzilla",
    "planet of apes",
)

def _fragment_key(text: str) -> str:
    """Normalized words without articles, so 'lord of the rings' finds 'lord of rings'."""
    return " ".join(w for w in normalize_title(text).split() if w not in {"the", "a", "an"})


_PROTECTED_PATTERNS = [
    (fragment, re.compile(rf"\b{re.escape(fragment)}\b")) for fragment in PROTECTED_FRANCHISES
]


def protected_fragment(title: str) -> str | None:
    """The franchise fragment a title refers to, if any."""
    key = _fragment_key(title)
    for fragment, pattern in _PROTECTED_PATTERNS:
        if pattern.search(key):
            return fragment
    return None


class Tier(StrEnum):
    """Validation gates, in evaluation order."""

    TITLE = "title_similarity"
    YEAR = "year"
    POPULARITY = "popularity"
    PROTECTED = "protected_title"
    CREATOR = "creator"
    REGION = "region_language"


class YearBasis(StrEnum):
    """What the accepted candidate's year was checked against."""

    EXPLICIT = "explicit"
    BATCH = "batch"
    NONE = "none"


@dataclass(frozen=True)
class Verdict:
    """Outcome of running one candidate through the gates."""

    candidate: CatalogCandidate
    similarity: float
    rejected_by: Tier | None = None
    reason: str = ""
    year_basis: YearBasis = YearBasis.NONE

    @property
    def accepted(self) -> bool:
        return self.rejected_by is None


@dataclass(frozen=True)
class ValidatedMatch:
    candidate: CatalogCandidate
    similarity: float
    year_basis: YearBasis
    details: CatalogDetails | None = None


class DetailsCache:
    """Per-call memo of details lookups; a failed lookup is remembered as None."""

    def __init__(self, catalog: Catalog):
        self.catalog = catalog
        self._entries: dict[tuple[MediaType, int], CatalogDetails | None] = {}

    def get(self, candidate: CatalogCandidate) -> CatalogDetails | None:
        key = (candidate.media_type, candidate.catalog_id)
        if key not in self._entries:
            try:
                self._entries[key] = self.catalog.get_details(*key)
            except MediaResolverError as e:
                log.debug("Details lookup failed for %s: %s", candidate.label, e)
                self._entries[key] = None
        return self._entries[key]

    def peek(self, candidate: CatalogCandidate) -> CatalogDetails | None:
        return self._entries.get((candidate.media_type, candidate.catalog_id))


class TieredValidator:
    """Accepts the first search hit that survives every applicable gate."""

    def __init__(self, catalog: Catalog, config: ValidationConfig | None = None):
        self.catalog = catalog
        self.config = config or ValidationConfig()

    def validate(
        self,
        query: NormalizedQuery,
        candidates: Sequence[CatalogCandidate],
        context: BatchContext | None = None,
        details: DetailsCache | None = None,
    ) -> ValidatedMatch | None:
        """
        Return the first candidate passing all gates, or None.

        Args:
            query: Normalized query with year and creator hints
            candidates: Search hits in catalog relevance order
            context: Batch context; None or untrusted never rejects anything
            details: Details memo to share with the caller
        """
        context = context or BatchContext.empty()
        details = details or DetailsCache(self.catalog)

        for candidate in candidates:
            verdict = self.evaluate(query, candidate, context, details)
            if verdict.accepted:
                log.info(
                    "Accepted %s %s for %r (similarity %.2f)",
                    candidate.media_type,
                    candidate.label,
                    query.raw,
                    verdict.similarity,
                )
                return ValidatedMatch(
                    candidate=candidate,
                    similarity=verdict.similarity,
                    year_basis=verdict.year_basis,
                    details=details.peek(candidate),
                )
            log.debug(
                "Rejected %s at %s: %s", candidate.label, verdict.rejected_by, verdict.reason
            )

        log.info("No candidate for %r survived validation (%d checked)", query.raw, len(candidates))
        return None

    def evaluate(
        self,
        query: NormalizedQuery,
        candidate: CatalogCandidate,
        context: BatchContext,
        details: DetailsCache,
    ) -> Verdict:
        """Run one candidate through the gates, stopping at the first failure."""
        cfg = self.config
        similarity = best_title_similarity(
            query.search_title, candidate.title, candidate.original_title
        )

        def reject(tier: Tier, reason: str) -> Verdict:
            return Verdict(candidate, similarity, rejected_by=tier, reason=reason)

        # Tier 1
        if similarity < cfg.min_title_similarity:
            return reject(Tier.TITLE, f"similarity {similarity:.2f} < {cfg.min_title_similarity}")

        # Tier 2
        year_basis, reason = self._check_year(query, candidate, context)
        if reason:
            return reject(Tier.YEAR, reason)

        # Tier 3
        if candidate.popularity < cfg.min_popularity and candidate.vote_count < cfg.min_votes:
            return reject(
                Tier.POPULARITY,
                f"popularity {candidate.popularity:.1f}, {candidate.vote_count} votes",
            )

        # Tier 3.5
        if reason := self._check_protected(query, candidate, similarity):
            return reject(Tier.PROTECTED, reason)

        # Tier 4
        if query.has_creator and (reason := self._check_creator(query, candidate, details)):
            return reject(Tier.CREATOR, reason)

        # Tier 4'
        if reason := self._check_region(candidate, context, similarity):
            return reject(Tier.REGION, reason)

        return Verdict(candidate, similarity, year_basis=year_basis)

    def _check_year(
        self, query: NormalizedQuery, candidate: CatalogCandidate, context: BatchContext
    ) -> tuple[YearBasis, str | None]:
        cfg = self.config
        trusted = context.is_trusted(cfg.context_trust_threshold)
        year = candidate.release_year

        explicit = query.year
        basis = YearBasis.EXPLICIT
        if explicit is None and trusted and (batch_year := self.batch_single_year(context)):
            explicit = batch_year
            basis = YearBasis.BATCH

        # Undated catalog entries cannot be judged on year
        if year is None:
            return YearBasis.NONE, None

        if explicit is not None:
            if abs(year - explicit) > cfg.year_tolerance:
                return basis, f"released {year}, wanted {explicit}"
            return basis, None

        if not trusted or context.inferred_year_range is None:
            return YearBasis.NONE, None

        span = context.inferred_year_range
        if span.contains(year, lead=cfg.range_lead_years, trail=cfg.range_trail_years):
            return YearBasis.BATCH, None

        if context.is_classic or self.is_high_engagement_classic(candidate):
            return YearBasis.NONE, None

        return YearBasis.BATCH, f"released {year}, batch spans {span.min}-{span.max}"

    @staticmethod
    def batch_single_year(context: BatchContext) -> int | None:
        """
        The one year a batch is about, if it has one.

        A primary year only counts when the batch years do not spread beyond
        it; a batch spanning several years is gated by its range instead.
        """
        year = context.inferred_year
        span = context.inferred_year_range
        if year is None:
            return None
        if span is not None and (span.min, span.max) != (year, year):
            return None
        return year

    def is_high_engagement_classic(self, candidate: CatalogCandidate) -> bool:
        year = candidate.release_year
        return (
            year is not None
            and year < self.config.classic_before_year
            and candidate.vote_count > self.config.classic_min_votes
        )

    def _check_protected(
        self, query: NormalizedQuery, candidate: CatalogCandidate, similarity: float
    ) -> str | None:
        cfg = self.config
        fragment = protected_fragment(query.search_title)
        if fragment is None:
            return None

        titles = {_fragment_key(candidate.title), _fragment_key(candidate.original_title)}
        if not any(re.search(rf"\b{re.escape(fragment)}\b", t) for t in titles):
            return f"title lacks franchise name '{fragment}'"
        if similarity < cfg.protected_min_similarity:
            return f"similarity {similarity:.2f} < {cfg.protected_min_similarity} for '{fragment}'"
        if (
            candidate.popularity < cfg.protected_min_popularity
            and candidate.vote_count < cfg.protected_min_votes
        ):
            return (
                f"too obscure for '{fragment}' "
                f"(popularity {candidate.popularity:.1f}, {candidate.vote_count} votes)"
            )
        return None

    def _check_creator(
        self, query: NormalizedQuery, candidate: CatalogCandidate, details: DetailsCache
    ) -> str | None:
        info = details.get(candidate)
        if info is None:
            # An unverifiable creator claim must not pass
            return "credits unavailable"

        if query.director:
            wanted = query.director.lower()
            if not any(wanted in name.lower() for name in info.directors):
                return f"director {query.director!r} not credited"

        if query.actor:
            wanted = query.actor.lower()
            top_cast = info.cast[: self.config.cast_depth]
            if not any(wanted in name.lower() for name in top_cast):
                return f"actor {query.actor!r} not in top {self.config.cast_depth} cast"

        return None

    def _check_region(
        self, candidate: CatalogCandidate, context: BatchContext, similarity: float
    ) -> str | None:
        if candidate.media_type != MediaType.TV:
            return None
        if not context.is_trusted(self.config.context_trust_threshold):
            return None

        expected = context.region_language
        actual = candidate.original_language
        if not expected or not actual or actual == expected:
            return None
        if similarity >= self.config.region_override_similarity:
            return None
        return f"language {actual} does not fit region {context.inferred_region}"


## Tests


def test_protected_fragment():
    assert protected_fragment("Spider-Man") == "spider man"
    assert protected_fragment("The Lord of the Rings: The Two Towers") == "lord of rings"
    assert protected_fragment("Fast & Furious 6") == "fast and furious"
    assert protected_fragment("Thoroughbreds") is None
    assert protected_fragment("Inception") is None


def test_verdict_accepted():
    from media_resolver.catalog import MovieCandidate

    c = MovieCandidate(catalog_id=1, title="x")
    assert Verdict(c, 1.0).accepted
    assert not Verdict(c, 0.1, rejected_by=Tier.TITLE).accepted

"""
Candidate ranking for interactive disambiguation.

Instead of accepting the first candidate that passes validation, every
plausible hit (movies and TV mixed) gets a confidence score and the top few
are returned so the caller can ask the user to pick.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from media_resolver.catalog import Catalog, CatalogCandidate
from media_resolver.config import RankingConfig
from media_resolver.normalize import NormalizedQuery
from media_resolver.similarity import best_title_similarity
from media_resolver.validator import DetailsCache

log = logging.getLogger(__name__)

YEAR_EXACT_BONUS = 0.20
YEAR_CLOSE_BONUS = 0.10
YEAR_MISMATCH_PENALTY = 0.15
CREATOR_VERIFIED_BONUS = 0.25
CREATOR_MISMATCH_PENALTY = 0.30


class ConfidenceLevel(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class RankedCandidate:
    candidate: CatalogCandidate
    confidence: float
    level: ConfidenceLevel
    title_similarity: float
    signals: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        c = self.candidate
        return {
            "catalog_id": c.catalog_id,
            "media_type": str(c.media_type),
            "title": c.title,
            "original_title": c.original_title,
            "release_year": c.release_year,
            "popularity": c.popularity,
            "vote_count": c.vote_count,
            "confidence": round(self.confidence, 3),
            "level": str(self.level),
            "title_similarity": round(self.title_similarity, 3),
            "signals": list(self.signals),
        }


@dataclass(frozen=True)
class CandidateRanking:
    best_match: RankedCandidate | None
    candidates: list[RankedCandidate] = field(default_factory=list)
    needs_user_confirmation: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "best_match": self.best_match.to_dict() if self.best_match else None,
            "candidates": [c.to_dict() for c in self.candidates],
            "needs_user_confirmation": self.needs_user_confirmation,
        }


class CandidateRanker:
    """Scores and ranks candidates with a banded confidence level."""

    def __init__(self, catalog: Catalog, config: RankingConfig | None = None):
        self.catalog = catalog
        self.config = config or RankingConfig()

    def level_for(self, confidence: float) -> ConfidenceLevel:
        if confidence >= self.config.high_confidence:
            return ConfidenceLevel.HIGH
        if confidence >= self.config.medium_confidence:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    def score(
        self,
        query: NormalizedQuery,
        candidate: CatalogCandidate,
        details: DetailsCache,
    ) -> RankedCandidate:
        similarity = best_title_similarity(
            query.search_title, candidate.title, candidate.original_title
        )
        score = similarity
        signals = [f"title {similarity:.2f}"]

        year = candidate.release_year
        if query.year is not None and year is not None:
            if year == query.year:
                score += YEAR_EXACT_BONUS
                signals.append("year match")
            elif abs(year - query.year) <= 1:
                score += YEAR_CLOSE_BONUS
                signals.append("year close")
            else:
                score -= YEAR_MISMATCH_PENALTY
                signals.append(f"year mismatch: wanted {query.year}")

        if candidate.popularity > 50:
            score += 0.10
            signals.append("high popularity")
        elif candidate.popularity > 20:
            score += 0.05
            signals.append("moderate popularity")
        elif candidate.popularity < 5:
            score -= 0.05
            signals.append("low popularity")

        if candidate.vote_count > 1000:
            score += 0.05
            signals.append("high engagement")
        elif candidate.vote_count < 10:
            score -= 0.10
            signals.append("minimal engagement")

        if query.has_creator:
            info = details.get(candidate)
            if info is None:
                signals.append("creator unverifiable")
            elif self._creator_matches(query, info.directors, info.cast):
                score += CREATOR_VERIFIED_BONUS
                signals.append(f"creator {query.creator} verified")
            else:
                score -= CREATOR_MISMATCH_PENALTY
                signals.append(f"creator {query.creator} not credited")

        confidence = max(0.0, min(1.0, score))
        return RankedCandidate(
            candidate=candidate,
            confidence=confidence,
            level=self.level_for(confidence),
            title_similarity=similarity,
            signals=tuple(signals),
        )

    @staticmethod
    def _creator_matches(query: NormalizedQuery, directors: list[str], cast: list[str]) -> bool:
        if query.director:
            wanted = query.director.lower()
            return any(wanted in name.lower() for name in directors)
        if query.actor:
            wanted = query.actor.lower()
            return any(wanted in name.lower() for name in cast[:10])
        return False

    def rank(
        self,
        query: NormalizedQuery,
        candidates: Sequence[CatalogCandidate],
        max_results: int | None = None,
        details: DetailsCache | None = None,
    ) -> CandidateRanking:
        limit = max_results or self.config.default_max_results
        details = details or DetailsCache(self.catalog)

        scored = [self.score(query, c, details) for c in candidates]
        # Stable sort keeps catalog order among equal scores
        scored.sort(key=lambda r: r.confidence, reverse=True)
        top = scored[:limit]

        if not top:
            return CandidateRanking(best_match=None, candidates=[], needs_user_confirmation=False)

        best = top[0]
        needs_confirmation = best.level != ConfidenceLevel.HIGH
        if len(top) > 1 and best.confidence - top[1].confidence <= self.config.near_tie_margin:
            needs_confirmation = True

        log.info(
            "Ranked %d candidates for %r: best %s (%.2f, %s)%s",
            len(scored),
            query.raw,
            best.candidate.label,
            best.confidence,
            best.level,
            ", needs confirmation" if needs_confirmation else "",
        )
        return CandidateRanking(
            best_match=best, candidates=top, needs_user_confirmation=needs_confirmation
        )


## Tests


def test_level_bands():
    ranker = CandidateRanker(catalog=None)  # type: ignore[arg-type]
    assert ranker.level_for(0.85) == ConfidenceLevel.HIGH
    assert ranker.level_for(0.84) == ConfidenceLevel.MEDIUM
    assert ranker.level_for(0.65) == ConfidenceLevel.MEDIUM
    assert ranker.level_for(0.2) == ConfidenceLevel.LOW

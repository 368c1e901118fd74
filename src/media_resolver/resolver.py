"""
Media entity resolution facade.

Ties the pipeline together: normalize the query, search the catalog, run the
hits through the tiered validator, pick images, build a result. Three call
shapes are exposed:

- ``resolve``: one free-text title
- ``resolve_batch``: related titles, disambiguated with a shared batch context
- ``resolve_with_candidates``: ranked alternatives for the user to choose from

Upstream failures never escape: each call site degrades to "no match".
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from media_resolver.batch_context import BatchContext, BatchContextInferencer
from media_resolver.catalog import Catalog, CatalogCandidate, MediaType, TMDBClient
from media_resolver.config import Config
from media_resolver.exceptions import MediaResolverError
from media_resolver.http_cache import HttpCache
from media_resolver.images import AssetSelector
from media_resolver.llm.classifier import CollectionClassifier
from media_resolver.normalize import NormalizedQuery, QueryNormalizer
from media_resolver.ranker import CandidateRanker, CandidateRanking
from media_resolver.validator import DetailsCache, TieredValidator, ValidatedMatch, YearBasis

log = logging.getLogger(__name__)

CAST_LIMIT = 5


class MatchMethod(StrEnum):
    """How a resolution was decided."""

    EXACT = "exact"
    FUZZY = "fuzzy"
    BATCH_CONTEXT = "batch_context"


@dataclass
class ResolutionResult:
    """A validated catalog entity with display data."""

    title: str
    release_year: int | None
    rating: float
    vote_count: int
    catalog_id: int
    media_type: MediaType
    match_confidence: int
    match_method: MatchMethod
    genres: list[str] = field(default_factory=list)
    poster_url: str | None = None
    backdrop_url: str | None = None
    overview: str = ""
    director: str | None = None
    cast: list[str] = field(default_factory=list)
    runtime_minutes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "release_year": self.release_year,
            "rating": self.rating,
            "vote_count": self.vote_count,
            "genres": list(self.genres),
            "poster_url": self.poster_url,
            "backdrop_url": self.backdrop_url,
            "catalog_id": self.catalog_id,
            "media_type": str(self.media_type),
            "match_confidence": self.match_confidence,
            "match_method": str(self.match_method),
            "overview": self.overview,
            "director": self.director,
            "cast": list(self.cast),
            "runtime_minutes": self.runtime_minutes,
        }


class MediaResolver:
    """
    Resolves free-text titles to catalog entities.

    Batch context is created per ``resolve_batch`` call and passed down
    explicitly; single-title calls always run with an empty context. Batches
    are serialized on a lock so only one owns a context at a time.
    """

    def __init__(
        self,
        catalog: Catalog,
        classifier: CollectionClassifier | None = None,
        config: Config | None = None,
        normalizer: QueryNormalizer | None = None,
    ):
        self.config = config or Config()
        self.catalog = catalog
        self.normalizer = normalizer or QueryNormalizer()
        self.validator = TieredValidator(catalog, self.config.validation)
        self.ranker = CandidateRanker(catalog, self.config.ranking)
        self.assets = AssetSelector(
            catalog,
            language=self.config.catalog.image_language,
            image_base_url=self.config.catalog.image_base_url,
        )
        self.inferencer = BatchContextInferencer(
            catalog, classifier, self.config.batch, self.normalizer
        )
        self._batch_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, cache: HttpCache | None = None) -> MediaResolver:
        """Build a resolver with a TMDB client and, if enabled, the LLM classifier."""
        catalog = TMDBClient.from_config(config, cache=cache)
        classifier = CollectionClassifier(config.classifier) if config.classifier.enabled else None
        return cls(catalog, classifier=classifier, config=config)

    def is_available(self) -> bool:
        return self.catalog.is_configured

    def close(self) -> None:
        close = getattr(self.catalog, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> MediaResolver:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public call shapes
    # ------------------------------------------------------------------

    def resolve(self, query: str, year_hint: int | None = None) -> ResolutionResult | None:
        """Resolve one title; None when nothing survives validation."""
        return self._resolve_one(query, year_hint, BatchContext.empty(), in_batch=False)

    def resolve_batch(self, titles: Sequence[str]) -> dict[str, ResolutionResult | None]:
        """
        Resolve related titles together.

        The batch context is inferred once from all titles and used for every
        per-title validation. Duplicate titles are resolved once.
        """
        results: dict[str, ResolutionResult | None] = {}
        with self.batch_scope(titles) as context:
            for title in titles:
                if title in results:
                    continue
                results[title] = self.resolve_in_batch(title, context)

        matched = sum(1 for r in results.values() if r is not None)
        log.info("Batch resolved %d/%d titles", matched, len(results))
        return results

    def resolve_in_batch(self, query: str, context: BatchContext) -> ResolutionResult | None:
        """Resolve one title of a batch opened with ``batch_scope``."""
        return self._resolve_one(query, None, context, in_batch=True)

    def resolve_with_candidates(
        self, query: str, max_results: int | None = None
    ) -> CandidateRanking:
        """Rank movie and TV hits for a query instead of picking one."""
        if not self.is_available():
            return CandidateRanking(best_match=None)

        normalized = self.normalizer.normalize(query)
        if not normalized.search_title:
            return CandidateRanking(best_match=None)

        candidates = self._mixed_candidates(normalized, normalized.year)
        if not candidates and normalized.year is not None:
            candidates = self._mixed_candidates(normalized, None)

        return self.ranker.rank(
            normalized,
            candidates,
            max_results=max_results,
            details=DetailsCache(self.catalog),
        )

    @contextmanager
    def batch_scope(self, titles: Sequence[str]) -> Iterator[BatchContext]:
        """
        Own the batch slot for the duration of the block.

        Yields the context inferred for ``titles``. The lock is released on
        exit, including when the block raises.
        """
        with self._batch_lock:
            context = self.inferencer.infer(titles) if self.is_available() else BatchContext.empty()
            log.debug("Batch scope opened for %d titles: %s", len(titles), context.summary())
            try:
                yield context
            finally:
                log.debug("Batch scope closed")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _resolve_one(
        self,
        raw: str,
        year_hint: int | None,
        context: BatchContext,
        in_batch: bool,
    ) -> ResolutionResult | None:
        if not self.is_available():
            log.debug("Catalog not configured, skipping %r", raw)
            return None

        query = self.normalizer.normalize(raw, year_hint=year_hint)
        if not query.search_title:
            return None

        details = DetailsCache(self.catalog)
        found = self._find_match(raw, year_hint, query, context, details)
        if found is None:
            return None

        matched_query, match = found
        return self._build_result(matched_query, match, details, in_batch)

    def _find_match(
        self,
        raw: str,
        year_hint: int | None,
        query: NormalizedQuery,
        context: BatchContext,
        details: DetailsCache,
    ) -> tuple[NormalizedQuery, ValidatedMatch] | None:
        trusted = context.is_trusted(self.config.validation.context_trust_threshold)

        if query.looks_like_tv or (trusted and context.inferred_media_type == MediaType.TV):
            return self._search_tv(query, context, details)

        if match := self._attempt(query, MediaType.MOVIE, query.year, context, details):
            return query, match

        # Stripping may have eaten part of a real title ("Scary Movie")
        literal = self.normalizer.normalize(raw, year_hint=year_hint, literal=True)
        if literal.search_title and literal.search_title != query.search_title:
            log.debug("Retrying %r as %r", raw, literal.search_title)
            if match := self._attempt(literal, MediaType.MOVIE, literal.year, context, details):
                return literal, match

        # Year filters miss entries dated by a different regional release
        if query.year is not None:
            if match := self._attempt(query, MediaType.MOVIE, None, context, details):
                return query, match

        if self.config.catalog.tv_fallback:
            return self._search_tv(query, context, details)
        return None

    def _search_tv(
        self, query: NormalizedQuery, context: BatchContext, details: DetailsCache
    ) -> tuple[NormalizedQuery, ValidatedMatch] | None:
        if match := self._attempt(query, MediaType.TV, query.year, context, details):
            return query, match
        if query.year is not None:
            if match := self._attempt(query, MediaType.TV, None, context, details):
                return query, match
        return None

    def _search(
        self, query: NormalizedQuery, media_type: MediaType, year: int | None
    ) -> list[CatalogCandidate]:
        limit = (
            self.config.catalog.max_tv_candidates
            if media_type == MediaType.TV
            else self.config.catalog.max_movie_candidates
        )
        try:
            hits = self.catalog.search(query.search_title, media_type, year)
        except MediaResolverError as e:
            log.warning("%s search for %r failed: %s", media_type, query.search_title, e)
            return []
        return hits[:limit]

    def _attempt(
        self,
        query: NormalizedQuery,
        media_type: MediaType,
        year: int | None,
        context: BatchContext,
        details: DetailsCache,
    ) -> ValidatedMatch | None:
        hits = self._search(query, media_type, year)
        if not hits:
            return None
        return self.validator.validate(query, hits, context, details)

    def _mixed_candidates(
        self, query: NormalizedQuery, year: int | None
    ) -> list[CatalogCandidate]:
        order = [MediaType.MOVIE, MediaType.TV]
        if query.looks_like_tv:
            order.reverse()
        candidates: list[CatalogCandidate] = []
        for media_type in order:
            candidates.extend(self._search(query, media_type, year))
        return candidates

    def _match_method(
        self, query: NormalizedQuery, match: ValidatedMatch, in_batch: bool
    ) -> MatchMethod:
        if match.year_basis == YearBasis.EXPLICIT:
            return MatchMethod.EXACT
        if match.year_basis == YearBasis.BATCH:
            return MatchMethod.BATCH_CONTEXT
        if match.similarity >= 1.0 and not in_batch:
            return MatchMethod.EXACT
        return MatchMethod.FUZZY

    def _build_result(
        self,
        query: NormalizedQuery,
        match: ValidatedMatch,
        details: DetailsCache,
        in_batch: bool,
    ) -> ResolutionResult | None:
        candidate = match.candidate

        assets = self.assets.select(candidate)
        if assets.is_empty:
            log.info("Discarding %s for %r: no images", candidate.label, query.raw)
            return None

        info = match.details or details.get(candidate)

        return ResolutionResult(
            title=candidate.title,
            release_year=candidate.release_year,
            rating=round(candidate.vote_average, 1),
            vote_count=candidate.vote_count,
            catalog_id=candidate.catalog_id,
            media_type=candidate.media_type,
            match_confidence=round(match.similarity * 100),
            match_method=self._match_method(query, match, in_batch),
            genres=list(info.genres) if info else [],
            poster_url=self.assets.poster_url(assets),
            backdrop_url=self.assets.backdrop_url(assets),
            overview=candidate.overview,
            director=info.directors[0] if info and info.directors else None,
            cast=list(info.cast[:CAST_LIMIT]) if info else [],
            runtime_minutes=info.runtime_minutes if info else None,
        )

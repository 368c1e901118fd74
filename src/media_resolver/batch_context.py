"""
Batch context inference.

Titles submitted together usually share something: a year, a country, a
medium. Knowing that lets the validator pick "The Office" (2005, US) over
"The Office" (2001, UK) when the rest of the batch is American TV from the
2000s. A ``BatchContext`` is created once per batch call and passed
explicitly to every per-title validation; it is never stored globally.
"""

from __future__ import annotations

import datetime
import logging
from collections import Counter
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from media_resolver.catalog import Catalog, CatalogCandidate, MediaType
from media_resolver.config import BatchConfig
from media_resolver.exceptions import MediaResolverError
from media_resolver.llm.classifier import CollectionClassifier, CollectionProfile
from media_resolver.normalize import QueryNormalizer
from media_resolver.similarity import best_title_similarity

log = logging.getLogger(__name__)

DEFAULT_CLASSIFIER_CONFIDENCE = 0.7
CLASSIC_AGE_YEARS = 20

# Original language implied by a region label
REGION_LANGUAGES: dict[str, str] = {
    "us": "en",
    "usa": "en",
    "uk": "en",
    "gb": "en",
    "korea": "ko",
    "south korea": "ko",
    "kr": "ko",
    "japan": "ja",
    "jp": "ja",
    "france": "fr",
    "fr": "fr",
    "spain": "es",
    "es": "es",
    "germany": "de",
    "de": "de",
    "italy": "it",
    "it": "it",
    "india": "hi",
    "in": "hi",
    "china": "zh",
    "cn": "zh",
}


class ContextSource(StrEnum):
    """Where a batch context came from."""

    EMPTY = "empty"
    CLASSIFIER = "classifier"
    STATISTICAL = "statistical"


@dataclass(frozen=True)
class YearRange:
    min: int
    max: int

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise ValueError(f"Invalid year range {self.min}-{self.max}")

    def contains(self, year: int, lead: int = 0, trail: int = 0) -> bool:
        """True if year lies in [min - lead, max + trail]."""
        return self.min - lead <= year <= self.max + trail


@dataclass(frozen=True)
class BatchContext:
    """Shared characteristics inferred for one batch of titles."""

    inferred_year: int | None = None
    inferred_year_range: YearRange | None = None
    inferred_language: str | None = None
    inferred_media_type: MediaType | None = None
    inferred_genre: str | None = None
    inferred_region: str | None = None
    collection_description: str = ""
    is_upcoming: bool = False
    is_classic: bool = False
    confidence: float = 0.0
    source: ContextSource = ContextSource.EMPTY

    @classmethod
    def empty(cls) -> BatchContext:
        return cls()

    def is_trusted(self, threshold: float = 0.5) -> bool:
        """Only a trusted context may reject candidates."""
        return self.confidence > threshold

    @property
    def region_language(self) -> str | None:
        if not self.inferred_region:
            return None
        return REGION_LANGUAGES.get(self.inferred_region.strip().lower())

    def summary(self) -> str:
        parts = [f"source={self.source}", f"confidence={self.confidence:.2f}"]
        if self.inferred_media_type:
            parts.append(f"type={self.inferred_media_type}")
        if self.inferred_year_range:
            parts.append(f"years={self.inferred_year_range.min}-{self.inferred_year_range.max}")
        elif self.inferred_year:
            parts.append(f"year={self.inferred_year}")
        if self.inferred_language:
            parts.append(f"lang={self.inferred_language}")
        if self.inferred_region:
            parts.append(f"region={self.inferred_region}")
        return " ".join(parts)


def context_from_profile(profile: CollectionProfile) -> BatchContext:
    """Translate a classifier answer into a batch context."""
    year_range = None
    if profile.year_min is not None and profile.year_max is not None:
        low, high = sorted((profile.year_min, profile.year_max))
        year_range = YearRange(low, high)

    media_type = None
    if profile.media_type in ("movie", "tv"):
        media_type = MediaType(profile.media_type)

    genre = profile.genre
    if genre and genre.strip().lower() == "mixed":
        genre = None

    region = profile.region
    if region and region.strip().lower() == "international":
        region = None

    return BatchContext(
        inferred_year=profile.primary_year,
        inferred_year_range=year_range,
        inferred_language=(profile.language or "").lower() or None,
        inferred_media_type=media_type,
        inferred_genre=genre,
        inferred_region=region,
        collection_description=profile.collection_description,
        is_upcoming=profile.is_upcoming,
        is_classic=profile.is_classic,
        confidence=(
            profile.confidence if profile.confidence is not None else DEFAULT_CLASSIFIER_CONFIDENCE
        ),
        source=ContextSource.CLASSIFIER,
    )


def _most_common(values: list[Any], quorum: float, total: int, strict: bool = False) -> Any:
    """Most frequent value if it covers enough of ``total``, else None."""
    if not values or total <= 0:
        return None
    value, count = Counter(values).most_common(1)[0]
    share = count / total
    if share > quorum if strict else share >= quorum:
        return value
    return None


class BatchContextInferencer:
    """
    Infers a ``BatchContext`` for a list of titles.

    Tries the semantic classifier first; when it has nothing to say, looks
    each title up in the catalog and aggregates the confident hits.
    """

    def __init__(
        self,
        catalog: Catalog,
        classifier: CollectionClassifier | None = None,
        config: BatchConfig | None = None,
        normalizer: QueryNormalizer | None = None,
    ):
        self.catalog = catalog
        self.classifier = classifier
        self.config = config or BatchConfig()
        self.normalizer = normalizer or QueryNormalizer()

    def infer(self, titles: Sequence[str]) -> BatchContext:
        if len(titles) <= 1:
            return BatchContext.empty()

        if self.classifier is not None:
            profile = self.classifier.classify(titles)
            if profile is not None:
                context = context_from_profile(profile)
                log.info("Batch context from classifier: %s", context.summary())
                return context
            log.info("Classifier unavailable, inferring batch context statistically")

        context = self.infer_statistically(titles)
        log.info("Batch context from catalog lookups: %s", context.summary())
        return context

    def _quick_lookup(self, title: str) -> CatalogCandidate | None:
        """Top catalog hit for a title, if it is a confident match."""
        query = self.normalizer.normalize(title)
        search_title = query.search_title
        try:
            hits: list[CatalogCandidate] = []
            if not query.looks_like_tv:
                hits = self.catalog.search(search_title, MediaType.MOVIE, query.year)
            if not hits:
                hits = self.catalog.search(search_title, MediaType.TV, query.year)
        except MediaResolverError as e:
            log.debug("Lookup for %r failed: %s", title, e)
            return None

        if not hits:
            return None
        top = hits[0]
        score = best_title_similarity(search_title, top.title, top.original_title)
        if score < self.config.min_similarity:
            log.debug("Lookup for %r: top hit %s too dissimilar (%.2f)", title, top.label, score)
            return None
        return top

    def infer_statistically(self, titles: Sequence[str]) -> BatchContext:
        sample = list(titles)[: self.config.sample_size]

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            hits = [hit for hit in pool.map(self._quick_lookup, sample) if hit is not None]

        if not hits:
            return BatchContext.empty()

        analyzed = len(hits)
        # Years typed into the titles count alongside the catalog's
        years = [y for title in sample if (y := self.normalizer.normalize(title).year) is not None]
        years += [h.release_year for h in hits if h.release_year is not None]

        primary_year = _most_common(years, self.config.year_quorum, analyzed)
        year_range = YearRange(min(years), max(years)) if years else None
        language = _most_common(
            [h.original_language for h in hits if h.original_language],
            self.config.language_quorum,
            analyzed,
        )
        media_type = _most_common(
            [h.media_type for h in hits], self.config.media_type_quorum, analyzed, strict=True
        )

        current_year = datetime.date.today().year

        description_parts = []
        if media_type:
            description_parts.append("movies" if media_type == MediaType.MOVIE else "TV series")
        if year_range:
            description_parts.append(
                f"from {year_range.min}"
                if year_range.min == year_range.max
                else f"from {year_range.min}-{year_range.max}"
            )
        if language:
            description_parts.append(f"in '{language}'")

        return BatchContext(
            inferred_year=primary_year,
            inferred_year_range=year_range,
            inferred_language=language,
            inferred_media_type=media_type,
            inferred_region="US" if language == "en" else None,
            collection_description=" ".join(description_parts) or "mixed titles",
            is_upcoming=primary_year is not None and primary_year >= current_year,
            is_classic=primary_year is not None and primary_year < current_year - CLASSIC_AGE_YEARS,
            confidence=min(1.0, analyzed / len(titles)),
            source=ContextSource.STATISTICAL,
        )


## Tests


def test_empty_context_is_not_trusted():
    ctx = BatchContext.empty()
    assert ctx.confidence == 0.0
    assert not ctx.is_trusted()
    assert ctx.region_language is None


def test_year_range_contains():
    years = YearRange(2000, 2005)
    assert years.contains(2000)
    assert not years.contains(1999)
    assert years.contains(1997, lead=3)
    assert years.contains(2006, trail=1)
    assert not years.contains(2007, trail=1)


def test_context_from_profile_maps_mixed_to_none():
    ctx = context_from_profile(
        CollectionProfile(
            media_type="mixed",
            genre="Mixed",
            region="Korea",
            language="KO",
            year_min=2021,
            year_max=2019,
        )
    )
    assert ctx.inferred_media_type is None
    assert ctx.inferred_genre is None
    assert ctx.inferred_language == "ko"
    assert ctx.region_language == "ko"
    assert ctx.inferred_year_range == YearRange(2019, 2021)
    assert ctx.confidence == DEFAULT_CLASSIFIER_CONFIDENCE
    assert ctx.source == ContextSource.CLASSIFIER


def test_context_from_profile_single_year():
    ctx = context_from_profile(CollectionProfile(media_type="tv", primary_year=2024, confidence=0.9))
    assert ctx.inferred_media_type == MediaType.TV
    assert ctx.inferred_year == 2024
    assert ctx.inferred_year_range is None
    assert ctx.confidence == 0.9


def test_most_common_quorum():
    assert _most_common([2010, 2010, 1999], 0.5, 3) == 2010
    assert _most_common([2010, 1999], 0.6, 2) is None
    assert _most_common(["movie", "movie", "tv"], 0.6, 3, strict=True) == "movie"
    assert _most_common([], 0.5, 0) is None

"""Pytest configuration and shared fixtures for media-resolver tests."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from media_resolver.catalog import (
    CatalogCandidate,
    CatalogDetails,
    CatalogImage,
    ImageSet,
    MediaType,
    MovieCandidate,
    TVCandidate,
)
from media_resolver.exceptions import UpstreamUnavailableError

# =============================================================================
# In-memory catalog
# =============================================================================


class FakeCatalog:
    """
    Catalog double with canned search results.

    Searches are keyed on the lowercased query text. A year filter keeps only
    hits released that year, like the real API. Every call is recorded in
    ``calls`` so tests can assert on what the pipeline asked for.
    """

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.results: dict[tuple[MediaType, str], list[CatalogCandidate]] = {}
        self.details: dict[tuple[MediaType, int], CatalogDetails] = {}
        self.images: dict[tuple[MediaType, int], ImageSet] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[Any, ...]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def add(self, query: str, *candidates: CatalogCandidate) -> None:
        for candidate in candidates:
            key = (candidate.media_type, query.lower())
            self.results.setdefault(key, []).append(candidate)

    def add_details(self, candidate: CatalogCandidate, **fields: Any) -> None:
        self.details[(candidate.media_type, candidate.catalog_id)] = CatalogDetails(
            catalog_id=candidate.catalog_id, media_type=candidate.media_type, **fields
        )

    def add_images(self, candidate: CatalogCandidate, images: ImageSet) -> None:
        self.images[(candidate.media_type, candidate.catalog_id)] = images

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing:
            raise UpstreamUnavailableError("fake", f"{operation} is down")

    def search(
        self, title: str, media_type: MediaType, year: int | None = None
    ) -> list[CatalogCandidate]:
        self.calls.append(("search", title, media_type, year))
        self._maybe_fail("search")
        hits = self.results.get((media_type, title.lower()), [])
        if year is not None:
            hits = [h for h in hits if h.release_year == year]
        return list(hits)

    def get_details(self, media_type: MediaType, catalog_id: int) -> CatalogDetails:
        self.calls.append(("details", media_type, catalog_id))
        self._maybe_fail("details")
        try:
            return self.details[(media_type, catalog_id)]
        except KeyError:
            raise UpstreamUnavailableError("fake", "HTTP 404", status_code=404) from None

    def get_images(self, media_type: MediaType, catalog_id: int, language: str) -> ImageSet:
        self.calls.append(("images", media_type, catalog_id, language))
        self._maybe_fail("images")
        return self.images.get((media_type, catalog_id), ImageSet())

    def searches(self) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == "search"]

    def detail_ids(self) -> list[int]:
        return [c[2] for c in self.calls if c[0] == "details"]


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


# =============================================================================
# Candidate factories
# =============================================================================


def make_movie(
    catalog_id: int,
    title: str,
    year: int | None = None,
    popularity: float = 50.0,
    vote_count: int = 5000,
    **fields: Any,
) -> MovieCandidate:
    fields.setdefault("original_language", "en")
    fields.setdefault("poster_path", f"/poster-{catalog_id}.jpg")
    fields.setdefault("vote_average", 7.5)
    fields.setdefault("original_title", title)
    return MovieCandidate(
        catalog_id=catalog_id,
        title=title,
        release_date=f"{year}-06-01" if year else None,
        popularity=popularity,
        vote_count=vote_count,
        **fields,
    )


def make_tv(
    catalog_id: int,
    title: str,
    year: int | None = None,
    popularity: float = 50.0,
    vote_count: int = 5000,
    **fields: Any,
) -> TVCandidate:
    fields.setdefault("original_language", "en")
    fields.setdefault("poster_path", f"/tv-poster-{catalog_id}.jpg")
    fields.setdefault("vote_average", 8.0)
    fields.setdefault("original_title", title)
    return TVCandidate(
        catalog_id=catalog_id,
        title=title,
        release_date=f"{year}-01-15" if year else None,
        popularity=popularity,
        vote_count=vote_count,
        **fields,
    )


@pytest.fixture
def movie():
    return make_movie


@pytest.fixture
def tv():
    return make_tv


@pytest.fixture
def image():
    def _image(path: str, language: str | None = "en", vote_average: float = 5.0) -> CatalogImage:
        return CatalogImage(file_path=path, iso_639_1=language, vote_average=vote_average)

    return _image


# =============================================================================
# Chat model stubs
# =============================================================================


class StubStructuredModel:
    """Stands in for ``model.with_structured_output(...)``."""

    def __init__(self, result: Any = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = 0

    def invoke(self, messages: Any) -> Any:
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class StubChatModel:
    def __init__(
        self,
        result: Any = None,
        error: Exception | None = None,
        bind_error: Exception | None = None,
    ):
        self.structured = StubStructuredModel(result, error)
        self.bind_error = bind_error

    def with_structured_output(self, schema: Any, method: str = "json_schema") -> Any:
        if self.bind_error:
            raise self.bind_error
        return self.structured


@pytest.fixture
def stub_classifier():
    """Factory for a CollectionClassifier backed by a canned answer."""
    from media_resolver.config import ClassifierConfig
    from media_resolver.llm.classifier import CollectionClassifier

    def _classifier(
        result: Any = None,
        error: Exception | None = None,
        bind_error: Exception | None = None,
    ) -> CollectionClassifier:
        model = StubChatModel(result, error, bind_error)
        return CollectionClassifier(ClassifierConfig(), model=model)  # type: ignore[arg-type]

    return _classifier


# =============================================================================
# Logging isolation
# =============================================================================


@pytest.fixture(autouse=True)
def restore_root_logging():
    """The CLI installs a root handler bound to CliRunner's stream; undo it."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)

"""
TMDB catalog client.

Text search for movies and TV series, details with credits, and image sets.
Raw JSON is turned into tagged records (``MovieCandidate``/``TVCandidate``)
right here so that missing fields get explicit defaults instead of leaking
``None`` into scoring math.

Every failure is raised as a ``MediaResolverError`` subclass; callers decide
how to degrade.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

import httpx

from media_resolver.exceptions import (
    MalformedResponseError,
    NotConfiguredError,
    UpstreamUnavailableError,
)
from media_resolver.http_cache import HttpCache, cache_key_for
from media_resolver.rate_limiter import TokenBucket

if TYPE_CHECKING:
    from media_resolver.config import Config

log = logging.getLogger(__name__)


class MediaType(StrEnum):
    """Catalog media types."""

    MOVIE = "movie"
    TV = "tv"


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _dicts(value: Any) -> list[dict[str, Any]]:
    """The object entries of a JSON array; anything else is empty."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


@dataclass(frozen=True)
class CatalogCandidate:
    """A raw search hit, not yet validated."""

    media_type: ClassVar[MediaType]

    catalog_id: int
    title: str
    original_title: str = ""
    original_language: str | None = None
    release_date: str | None = None
    popularity: float = 0.0
    vote_count: int = 0
    vote_average: float = 0.0
    overview: str = ""
    poster_path: str | None = None
    backdrop_path: str | None = None
    genre_ids: tuple[int, ...] = ()

    @property
    def release_year(self) -> int | None:
        if self.release_date and len(self.release_date) >= 4 and self.release_date[:4].isdigit():
            return int(self.release_date[:4])
        return None

    @property
    def label(self) -> str:
        year = self.release_year
        return f"{self.title} ({year})" if year else self.title


@dataclass(frozen=True)
class MovieCandidate(CatalogCandidate):
    """Movie search hit."""

    media_type: ClassVar[MediaType] = MediaType.MOVIE

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MovieCandidate:
        title = _as_str(data.get("title")) or _as_str(data.get("original_title")) or ""
        return cls(
            catalog_id=_as_int(data.get("id")),
            title=title,
            original_title=_as_str(data.get("original_title")) or title,
            original_language=_as_str(data.get("original_language")),
            release_date=_as_str(data.get("release_date")),
            popularity=_as_float(data.get("popularity")),
            vote_count=_as_int(data.get("vote_count")),
            vote_average=_as_float(data.get("vote_average")),
            overview=_as_str(data.get("overview")) or "",
            poster_path=_as_str(data.get("poster_path")),
            backdrop_path=_as_str(data.get("backdrop_path")),
            genre_ids=tuple(g for g in data.get("genre_ids") or () if isinstance(g, int)),
        )


@dataclass(frozen=True)
class TVCandidate(CatalogCandidate):
    """TV series search hit (TMDB calls the title ``name``)."""

    media_type: ClassVar[MediaType] = MediaType.TV

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> TVCandidate:
        title = _as_str(data.get("name")) or _as_str(data.get("original_name")) or ""
        return cls(
            catalog_id=_as_int(data.get("id")),
            title=title,
            original_title=_as_str(data.get("original_name")) or title,
            original_language=_as_str(data.get("original_language")),
            release_date=_as_str(data.get("first_air_date")),
            popularity=_as_float(data.get("popularity")),
            vote_count=_as_int(data.get("vote_count")),
            vote_average=_as_float(data.get("vote_average")),
            overview=_as_str(data.get("overview")) or "",
            poster_path=_as_str(data.get("poster_path")),
            backdrop_path=_as_str(data.get("backdrop_path")),
            genre_ids=tuple(g for g in data.get("genre_ids") or () if isinstance(g, int)),
        )


@dataclass
class CatalogDetails:
    """Details and credits for one catalog entry."""

    catalog_id: int
    media_type: MediaType
    genres: list[str] = field(default_factory=list)
    directors: list[str] = field(default_factory=list)
    cast: list[str] = field(default_factory=list)  # billing order
    runtime_minutes: int | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None

    @classmethod
    def from_api(cls, media_type: MediaType, data: dict[str, Any]) -> CatalogDetails:
        credits = data.get("credits")
        if not isinstance(credits, dict):
            credits = {}
        crew = _dicts(credits.get("crew"))
        cast_members = _dicts(credits.get("cast"))
        cast_members.sort(key=lambda c: _as_int(c.get("order")))

        directors = [c["name"] for c in crew if c.get("job") == "Director" and _as_str(c.get("name"))]
        if media_type == MediaType.TV:
            # Series credit their creators rather than a single director
            creators = [c["name"] for c in _dicts(data.get("created_by")) if _as_str(c.get("name"))]
            directors = creators + [d for d in directors if d not in creators]

        runtime = data.get("runtime")
        if media_type == MediaType.TV:
            episode_runtimes = data.get("episode_run_time")
            runtime = (
                episode_runtimes[0]
                if isinstance(episode_runtimes, list) and episode_runtimes
                else None
            )

        return cls(
            catalog_id=_as_int(data.get("id")),
            media_type=media_type,
            genres=[g["name"] for g in _dicts(data.get("genres")) if _as_str(g.get("name"))],
            directors=directors,
            cast=[c["name"] for c in cast_members if _as_str(c.get("name"))],
            runtime_minutes=_as_int(runtime) or None,
            poster_path=_as_str(data.get("poster_path")),
            backdrop_path=_as_str(data.get("backdrop_path")),
        )


@dataclass(frozen=True)
class CatalogImage:
    """One entry of an images endpoint response."""

    file_path: str
    iso_639_1: str | None = None
    vote_average: float = 0.0
    vote_count: int = 0
    width: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CatalogImage:
        return cls(
            file_path=data.get("file_path") or "",
            iso_639_1=_as_str(data.get("iso_639_1")),
            vote_average=_as_float(data.get("vote_average")),
            vote_count=_as_int(data.get("vote_count")),
            width=_as_int(data.get("width")),
        )


@dataclass
class ImageSet:
    backdrops: list[CatalogImage] = field(default_factory=list)
    posters: list[CatalogImage] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ImageSet:
        def parse(key: str) -> list[CatalogImage]:
            return [
                CatalogImage.from_api(item)
                for item in data.get(key) or []
                if isinstance(item, dict) and item.get("file_path")
            ]

        return cls(backdrops=parse("backdrops"), posters=parse("posters"))


class Catalog(Protocol):
    """What the resolution pipeline needs from a media catalog."""

    @property
    def is_configured(self) -> bool: ...

    def search(
        self, title: str, media_type: MediaType, year: int | None = None
    ) -> list[CatalogCandidate]: ...

    def get_details(self, media_type: MediaType, catalog_id: int) -> CatalogDetails: ...

    def get_images(self, media_type: MediaType, catalog_id: int, language: str) -> ImageSet: ...


class TMDBClient:
    """
    TMDB v3 API client.

    Authenticates with an ``api_key`` query parameter (env: TMDB_API_KEY).
    Responses are optionally cached and requests are rate limited.
    """

    SERVICE = "tmdb"
    BASE_URL = "https://api.themoviedb.org/3"
    USER_AGENT = "media-resolver/0.1.0"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = BASE_URL,
        language: str = "en-US",
        timeout_s: float = 10.0,
        cache: HttpCache | None = None,
        rate_limit_per_sec: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize TMDB client.

        Args:
            api_key: TMDB v3 API key (env: TMDB_API_KEY)
            base_url: API root, overridable for proxies and tests
            language: Language for titles and overviews in search results
            timeout_s: Per-request timeout in seconds
            cache: Optional response cache
            rate_limit_per_sec: Sustained request rate; 0 disables limiting
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key or os.getenv("TMDB_API_KEY")
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.cache = cache
        self._bucket = TokenBucket.per_second(rate_limit_per_sec)
        self._client = httpx.Client(
            timeout=timeout_s,
            headers={"User-Agent": self.USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

        if not self.api_key:
            log.warning("TMDB API key not configured; catalog lookups will return no results")

    @classmethod
    def from_config(cls, config: Config, cache: HttpCache | None = None) -> TMDBClient:
        catalog = config.catalog
        if cache is None and config.http_cache.enabled:
            cache = HttpCache(config.http_cache.directory, config.http_cache.ttl_seconds)
        return cls(
            api_key=catalog.api_key,
            base_url=catalog.base_url,
            language=catalog.language,
            timeout_s=catalog.timeout_s,
            cache=cache,
            rate_limit_per_sec=catalog.rate_limit_per_sec,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _request(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make a rate-limited, cached GET request and return the JSON object."""
        if not self.api_key:
            raise NotConfiguredError(self.SERVICE, "TMDB_API_KEY not set")

        url = f"{self.base_url}/{path.lstrip('/')}"
        params = {k: v for k, v in (params or {}).items() if v is not None}
        key = cache_key_for(url, params)

        if self.cache:
            cached = self.cache.get(key)
            if cached is not None:
                log.debug("Cache hit: %s", key)
                return cached

        self._bucket.acquire()

        try:
            response = self._client.get(url, params={**params, "api_key": self.api_key})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise UpstreamUnavailableError(
                self.SERVICE, f"HTTP {status} for {path}", status_code=status
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(self.SERVICE, f"{type(e).__name__} for {path}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(self.SERVICE, f"Invalid JSON for {path}") from e
        if not isinstance(payload, dict):
            raise MalformedResponseError(self.SERVICE, f"Expected an object for {path}")

        if self.cache:
            self.cache.put(key, payload)

        return payload

    def _results(self, payload: dict[str, Any], path: str) -> list[dict[str, Any]]:
        results = payload.get("results", [])
        if not isinstance(results, list):
            raise MalformedResponseError(self.SERVICE, f"'results' is not a list for {path}")
        return [r for r in results if isinstance(r, dict) and r.get("id") is not None]

    def search_movies(self, title: str, year: int | None = None) -> list[MovieCandidate]:
        """Search movies by title, optionally filtered by primary release year."""
        payload = self._request(
            "search/movie",
            {
                "query": title,
                "include_adult": "false",
                "language": self.language,
                "primary_release_year": year,
            },
        )
        return [MovieCandidate.from_api(r) for r in self._results(payload, "search/movie")]

    def search_tv(self, title: str, year: int | None = None) -> list[TVCandidate]:
        """Search TV series by title, optionally filtered by first air year."""
        payload = self._request(
            "search/tv",
            {
                "query": title,
                "include_adult": "false",
                "language": self.language,
                "first_air_date_year": year,
            },
        )
        return [TVCandidate.from_api(r) for r in self._results(payload, "search/tv")]

    def search(
        self, title: str, media_type: MediaType, year: int | None = None
    ) -> list[CatalogCandidate]:
        if media_type == MediaType.TV:
            return list(self.search_tv(title, year))
        return list(self.search_movies(title, year))

    def get_details(self, media_type: MediaType, catalog_id: int) -> CatalogDetails:
        """Get genres, credits and runtime for a movie or series."""
        payload = self._request(
            f"{media_type.value}/{catalog_id}",
            {"append_to_response": "credits", "language": self.language},
        )
        return CatalogDetails.from_api(media_type, payload)

    def get_images(self, media_type: MediaType, catalog_id: int, language: str) -> ImageSet:
        """Get backdrops and posters tagged with language, plus language-neutral ones."""
        payload = self._request(
            f"{media_type.value}/{catalog_id}/images",
            {"include_image_language": f"{language},null"},
        )
        return ImageSet.from_api(payload)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TMDBClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


## Tests


def test_movie_candidate_from_api_defaults():
    c = MovieCandidate.from_api({"id": 603, "title": "The Matrix"})
    assert c.catalog_id == 603
    assert c.original_title == "The Matrix"
    assert c.popularity == 0.0
    assert c.vote_count == 0
    assert c.release_year is None
    assert c.media_type == MediaType.MOVIE


def test_tv_candidate_from_api():
    c = TVCandidate.from_api(
        {
            "id": 93405,
            "name": "Squid Game",
            "original_name": "오징어 게임",
            "original_language": "ko",
            "first_air_date": "2021-09-17",
            "popularity": "120.5",
            "vote_count": 14000,
        }
    )
    assert c.title == "Squid Game"
    assert c.original_title == "오징어 게임"
    assert c.release_year == 2021
    assert c.popularity == 120.5
    assert c.media_type == MediaType.TV
    assert c.label == "Squid Game (2021)"


def test_release_year_ignores_garbage():
    assert MovieCandidate.from_api({"id": 1, "title": "x", "release_date": ""}).release_year is None
    assert MovieCandidate.from_api({"id": 1, "title": "x", "release_date": "TBA"}).release_year is None


def test_details_from_api_movie():
    details = CatalogDetails.from_api(
        MediaType.MOVIE,
        {
            "id": 27205,
            "runtime": 148,
            "genres": [{"id": 28, "name": "Action"}, {"id": 878, "name": "Science Fiction"}],
            "credits": {
                "cast": [
                    {"name": "Joseph Gordon-Levitt", "order": 1},
                    {"name": "Leonardo DiCaprio", "order": 0},
                ],
                "crew": [
                    {"name": "Christopher Nolan", "job": "Director"},
                    {"name": "Hans Zimmer", "job": "Original Music Composer"},
                ],
            },
        },
    )
    assert details.genres == ["Action", "Science Fiction"]
    assert details.directors == ["Christopher Nolan"]
    assert details.cast == ["Leonardo DiCaprio", "Joseph Gordon-Levitt"]
    assert details.runtime_minutes == 148


def test_details_from_api_tv_uses_creators():
    details = CatalogDetails.from_api(
        MediaType.TV,
        {
            "id": 1,
            "episode_run_time": [30],
            "created_by": [{"name": "Christopher Storer"}],
            "credits": {"cast": [], "crew": []},
        },
    )
    assert details.directors == ["Christopher Storer"]
    assert details.runtime_minutes == 30


def test_image_set_skips_entries_without_path():
    images = ImageSet.from_api(
        {"backdrops": [{"file_path": "/a.jpg", "iso_639_1": "en"}, {"iso_639_1": "fr"}]}
    )
    assert [b.file_path for b in images.backdrops] == ["/a.jpg"]
    assert images.posters == []

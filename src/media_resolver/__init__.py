__all__ = (
    "main",
    "Config",
    "HttpCache",
    "TMDBClient",
    "MediaType",
    "MovieCandidate",
    "TVCandidate",
    # Pipeline
    "QueryNormalizer",
    "NormalizedQuery",
    "title_similarity",
    "BatchContext",
    "BatchContextInferencer",
    "TieredValidator",
    "CandidateRanker",
    "CandidateRanking",
    "AssetSelector",
    # Facade
    "MediaResolver",
    "ResolutionResult",
    "MatchMethod",
    # Errors
    "MediaResolverError",
    "NotConfiguredError",
    "UpstreamUnavailableError",
    "MalformedResponseError",
)

from media_resolver.batch_context import BatchContext, BatchContextInferencer
from media_resolver.catalog import MediaType, MovieCandidate, TMDBClient, TVCandidate
from media_resolver.cli import main
from media_resolver.config import Config
from media_resolver.exceptions import (
    MalformedResponseError,
    MediaResolverError,
    NotConfiguredError,
    UpstreamUnavailableError,
)
from media_resolver.http_cache import HttpCache
from media_resolver.images import AssetSelector
from media_resolver.normalize import NormalizedQuery, QueryNormalizer
from media_resolver.ranker import CandidateRanker, CandidateRanking
from media_resolver.resolver import MatchMethod, MediaResolver, ResolutionResult
from media_resolver.similarity import title_similarity
from media_resolver.validator import TieredValidator

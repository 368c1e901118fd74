from __future__ import annotations

import os
import tomllib
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field


class CatalogConfig(BaseModel):
    """TMDB catalog API configuration."""

    # Read from TMDB_API_KEY if not provided
    api_key: str | None = Field(default=None)

    base_url: str = Field(default="https://api.themoviedb.org/3")
    image_base_url: str = Field(default="https://image.tmdb.org/t/p")
    language: str = Field(default="en-US")
    image_language: str = Field(default="en")

    timeout_s: float = Field(default=10.0, ge=1.0)
    rate_limit_per_sec: float = Field(default=20.0, ge=0)  # 0 disables limiting

    # How many search hits the validator looks at
    max_movie_candidates: int = Field(default=10, ge=1)
    max_tv_candidates: int = Field(default=15, ge=1)

    # Try the TV search when no movie passes validation
    tv_fallback: bool = Field(default=True)


class HttpCacheConfig(BaseModel):
    """HTTP response cache configuration."""

    directory: Path = Field(default=Path(".cache/media-resolver"))
    ttl_seconds: int = Field(default=3600, ge=0)
    enabled: bool = Field(default=True)


class LLMProviderType(StrEnum):
    """Supported LLM provider types."""

    OLLAMA = "ollama"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class ClassifierConfig(BaseModel):
    """Batch collection classifier (LLM) configuration."""

    enabled: bool = Field(default=True)

    provider: LLMProviderType = Field(default=LLMProviderType.OPENAI)

    # OpenAI: gpt-4o-mini, gpt-4o; Ollama: llama3.2, qwen3:8b, ...
    model_id: str = Field(default="gpt-4o-mini")

    api_key_env: str = Field(default="OPENAI_API_KEY")
    base_url: str | None = Field(default=None)

    timeout_s: float = Field(default=15.0, ge=1.0)
    max_tokens: int = Field(default=512, ge=1)
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)

    # Titles beyond this are not sent to the model
    max_titles: int = Field(default=15, ge=2)


class ValidationConfig(BaseModel):
    """Thresholds for the tiered candidate validator."""

    min_title_similarity: float = Field(default=0.80, ge=0.0, le=1.0)

    year_tolerance: int = Field(default=1, ge=0)
    range_lead_years: int = Field(default=3, ge=0)
    range_trail_years: int = Field(default=1, ge=0)

    # Well-known older titles are exempt from the batch year range
    classic_before_year: int = Field(default=2010)
    classic_min_votes: int = Field(default=500, ge=0)

    min_popularity: float = Field(default=2.0, ge=0.0)
    min_votes: int = Field(default=15, ge=0)

    protected_min_similarity: float = Field(default=0.90, ge=0.0, le=1.0)
    protected_min_popularity: float = Field(default=10.0, ge=0.0)
    protected_min_votes: int = Field(default=100, ge=0)

    cast_depth: int = Field(default=10, ge=1)

    region_override_similarity: float = Field(default=0.85, ge=0.0, le=1.0)

    # Batch context at or below this confidence never rejects a candidate
    context_trust_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


class RankingConfig(BaseModel):
    """Candidate ranking (disambiguation mode) configuration."""

    high_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    medium_confidence: float = Field(default=0.65, ge=0.0, le=1.0)
    near_tie_margin: float = Field(default=0.15, ge=0.0, le=1.0)
    default_max_results: int = Field(default=5, ge=1)


class BatchConfig(BaseModel):
    """Statistical batch-context inference configuration."""

    sample_size: int = Field(default=10, ge=1)
    min_similarity: float = Field(default=0.70, ge=0.0, le=1.0)
    year_quorum: float = Field(default=0.5, ge=0.0, le=1.0)
    language_quorum: float = Field(default=0.6, ge=0.0, le=1.0)
    media_type_quorum: float = Field(default=0.6, ge=0.0, le=1.0)
    max_workers: int = Field(default=4, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")  # DEBUG, INFO, WARNING, ERROR
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


class Config(BaseModel):
    """
    Main configuration for media-resolver.

    Loads from TOML file with optional environment variable overrides.
    """

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    http_cache: HttpCacheConfig = Field(default_factory=HttpCacheConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """
        Load configuration from TOML file with environment variable overrides.

        Environment variables take precedence and follow the pattern
        MEDIA_RESOLVER_<SECTION>_<KEY> (e.g. MEDIA_RESOLVER_CATALOG_TIMEOUT_S).
        The TMDB key is also read from plain TMDB_API_KEY.

        Everything is gathered into one dictionary first and validated by
        Pydantic in a single pass.
        """
        config_dict: dict[str, object] = {}

        if config_path and config_path.exists():
            config_dict = tomllib.loads(config_path.read_text())

        config_dict = cls._merge_env_overrides(config_dict)
        return cls.model_validate(config_dict)

    @classmethod
    def _merge_env_overrides(cls, config_dict: dict[str, object]) -> dict[str, object]:
        """Return config_dict with environment overrides applied (unvalidated)."""
        env_prefix = "MEDIA_RESOLVER_"

        for section_name, section_field in cls.model_fields.items():
            section_model = section_field.annotation
            if not (isinstance(section_model, type) and issubclass(section_model, BaseModel)):
                continue

            section = config_dict.setdefault(section_name, {})
            if not isinstance(section, dict):
                section = {}
                config_dict[section_name] = section

            for key in section_model.model_fields:
                env_name = f"{env_prefix}{section_name.upper()}_{key.upper()}"
                if (value := os.getenv(env_name)) is not None:
                    section[key] = value

        catalog = config_dict["catalog"]
        assert isinstance(catalog, dict)
        if "api_key" not in catalog and (tmdb_key := os.getenv("TMDB_API_KEY")):
            catalog["api_key"] = tmdb_key

        return config_dict


## Tests


def test_config_defaults():
    config = Config()
    assert config.catalog.base_url == "https://api.themoviedb.org/3"
    assert config.catalog.max_movie_candidates == 10
    assert config.http_cache.enabled is True
    assert config.http_cache.ttl_seconds == 3600
    assert config.classifier.provider == "openai"
    assert config.classifier.max_titles == 15
    assert config.validation.classic_before_year == 2010
    assert config.validation.classic_min_votes == 500
    assert config.ranking.default_max_results == 5


def test_config_from_dict():
    config = Config.model_validate(
        {
            "catalog": {"language": "nl-NL", "tv_fallback": False},
            "validation": {"classic_before_year": 2000},
        }
    )
    assert config.catalog.language == "nl-NL"
    assert config.catalog.tv_fallback is False
    assert config.validation.classic_before_year == 2000
    assert config.validation.classic_min_votes == 500


def test_config_env_overrides(monkeypatch):
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    monkeypatch.setenv("MEDIA_RESOLVER_HTTP_CACHE_TTL_SECONDS", "7200")
    monkeypatch.setenv("MEDIA_RESOLVER_HTTP_CACHE_ENABLED", "false")
    monkeypatch.setenv("MEDIA_RESOLVER_CLASSIFIER_PROVIDER", "ollama")
    monkeypatch.setenv("MEDIA_RESOLVER_VALIDATION_CLASSIC_MIN_VOTES", "1000")

    config = Config.load()
    assert config.http_cache.ttl_seconds == 7200
    assert config.http_cache.enabled is False
    assert config.classifier.provider == LLMProviderType.OLLAMA
    assert config.validation.classic_min_votes == 1000
    assert config.catalog.api_key is None


def test_config_tmdb_key_from_env(monkeypatch):
    monkeypatch.setenv("TMDB_API_KEY", "abc123")
    config = Config.load()
    assert config.catalog.api_key == "abc123"


def test_config_prefixed_key_wins(monkeypatch):
    monkeypatch.setenv("TMDB_API_KEY", "plain")
    monkeypatch.setenv("MEDIA_RESOLVER_CATALOG_API_KEY", "prefixed")
    config = Config.load()
    assert config.catalog.api_key == "prefixed"


def test_config_load_toml(tmp_path, monkeypatch):
    monkeypatch.delenv("MEDIA_RESOLVER_CATALOG_TIMEOUT_S", raising=False)
    path = tmp_path / "config.toml"
    path.write_text('[catalog]\ntimeout_s = 4.5\n\n[batch]\nsample_size = 6\n')
    config = Config.load(path)
    assert config.catalog.timeout_s == 4.5
    assert config.batch.sample_size == 6


def test_config_load_nonexistent_file():
    config = Config.load(Path("/nonexistent/config.toml"))
    assert config.ranking.high_confidence == 0.85

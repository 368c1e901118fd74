"""LLM collection classifier.

Given the titles of a batch, asks a chat model what the collection has in
common (media type, years, language, region, genre, upcoming/classic).
The answer only ever *informs* resolution, so every failure mode (no
credentials, transport error, timeout, unparseable output) collapses into a
``None`` result and the caller falls back to statistical inference.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, ValidationError

from media_resolver.llm.langchain_provider import LangChainProviderError, chat_model_from_config
from media_resolver.llm.structured_output import (
    format_validation_errors,
    strip_null_values,
    with_structured_output,
)

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from media_resolver.config import ClassifierConfig

log = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a film and television expert. You will receive a list of titles that \
a user submitted together, for example a watch list, an awards slate or a streaming \
service's upcoming releases. Describe what the collection has in common so that each \
title can be matched to the right catalog entry.

Rules:
- media_type is "movie" or "tv" only if nearly all titles are that type, otherwise "mixed".
- primary_year is the single release year most titles share, if there is one.
- year_min/year_max bound the release years of the collection.
- language is an ISO 639-1 code (en, ko, ja, fr, ...) shared by most titles.
- region is one of US, UK, Korea, Japan, France, India, Spain, Germany, Italy, \
China, International.
- genre is a single genre name, or "mixed".
- is_upcoming: the titles are mostly not yet released.
- is_classic: the titles are mostly older than twenty years.
- confidence is how sure you are about this description, between 0 and 1.
Leave a field null when you do not know."""


class CollectionProfile(BaseModel):
    """What a batch of titles has in common, as described by the model."""

    collection_description: str = Field(default="", description="Short summary of the collection")
    media_type: Literal["movie", "tv", "mixed"] | None = None
    primary_year: int | None = Field(default=None, ge=1870, le=2100)
    year_min: int | None = Field(default=None, ge=1870, le=2100)
    year_max: int | None = Field(default=None, ge=1870, le=2100)
    language: str | None = Field(default=None, description="ISO 639-1 code")
    region: str | None = None
    genre: str | None = None
    is_upcoming: bool = False
    is_classic: bool = False
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


def build_prompt(titles: Sequence[str], current_year: int | None = None) -> str:
    year = current_year or datetime.date.today().year
    lines = [f"The current year is {year}.", "", "Titles:"]
    lines.extend(f"{i}. {title}" for i, title in enumerate(titles, start=1))
    lines.append("")
    lines.append("What do these titles have in common?")
    return "\n".join(lines)


class CollectionClassifier:
    """Semantic batch classifier backed by a LangChain chat model."""

    def __init__(self, config: ClassifierConfig, model: BaseChatModel | None = None):
        """
        Args:
            config: Classifier configuration section
            model: Pre-built chat model; created from config on first use if None
        """
        self.config = config
        self._model = model
        self._unavailable = not config.enabled

    @property
    def available(self) -> bool:
        return not self._unavailable

    def _chat_model(self) -> BaseChatModel | None:
        if self._unavailable:
            return None
        if self._model is None:
            try:
                self._model = chat_model_from_config(self.config)
            except LangChainProviderError as e:
                # Logged once; later batches go straight to the fallback
                log.warning("Collection classifier not configured: %s", e)
                self._unavailable = True
                return None
        return self._model

    def classify(self, titles: Sequence[str]) -> CollectionProfile | None:
        """Describe the collection, or return None if the model cannot be used."""
        model = self._chat_model()
        if model is None:
            return None

        from langchain_core.messages import HumanMessage, SystemMessage

        sample = list(titles)[: self.config.max_titles]
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=build_prompt(sample)),
        ]

        try:
            structured = with_structured_output(model, CollectionProfile, self.config.provider.value)
            result = structured.invoke(messages)
        except Exception as e:
            # Provider SDKs raise their own hierarchies; all of them mean "no answer"
            log.warning("Collection classifier call failed: %s: %s", type(e).__name__, e)
            return None

        return self._coerce(result)

    def _coerce(self, result: Any) -> CollectionProfile | None:
        if isinstance(result, CollectionProfile):
            return result
        if isinstance(result, dict):
            try:
                return CollectionProfile.model_validate(strip_null_values(result))
            except ValidationError as e:
                log.warning(
                    "Collection classifier returned invalid data: %s",
                    format_validation_errors(e.errors()),  # type: ignore[arg-type]
                )
                return None
        log.warning("Collection classifier returned %s, expected a profile", type(result).__name__)
        return None


## Tests


class _StubRunnable:
    def __init__(self, result: Any = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.messages: list[Any] = []

    def invoke(self, messages: Any) -> Any:
        self.messages.append(messages)
        if self.error:
            raise self.error
        return self.result


class _StubModel:
    def __init__(self, runnable: _StubRunnable):
        self.runnable = runnable

    def with_structured_output(self, schema: Any, method: str) -> _StubRunnable:
        return self.runnable


def _config(**overrides: Any) -> ClassifierConfig:
    from media_resolver.config import ClassifierConfig

    return ClassifierConfig(**overrides)


def test_build_prompt_lists_titles():
    prompt = build_prompt(["Dune", "Oppenheimer"], current_year=2024)
    assert "The current year is 2024." in prompt
    assert "1. Dune" in prompt
    assert "2. Oppenheimer" in prompt


def test_classify_returns_profile():
    profile = CollectionProfile(media_type="movie", primary_year=2023, confidence=0.9)
    runnable = _StubRunnable(result=profile)
    classifier = CollectionClassifier(_config(max_titles=2), model=_StubModel(runnable))  # type: ignore[arg-type]

    assert classifier.classify(["A", "B", "C"]) is profile
    human = runnable.messages[0][1].content
    assert "2. B" in human
    assert "3. C" not in human


def test_classify_accepts_dict_with_nulls():
    runnable = _StubRunnable(result={"media_type": "tv", "confidence": None, "genre": None})
    classifier = CollectionClassifier(_config(), model=_StubModel(runnable))  # type: ignore[arg-type]
    profile = classifier.classify(["A", "B"])
    assert profile is not None
    assert profile.media_type == "tv"
    assert profile.confidence is None


def test_classify_invalid_dict_is_none():
    runnable = _StubRunnable(result={"confidence": 7})
    classifier = CollectionClassifier(_config(), model=_StubModel(runnable))  # type: ignore[arg-type]
    assert classifier.classify(["A", "B"]) is None


def test_classify_transport_error_is_none():
    runnable = _StubRunnable(error=TimeoutError("read timed out"))
    classifier = CollectionClassifier(_config(), model=_StubModel(runnable))  # type: ignore[arg-type]
    assert classifier.classify(["A", "B"]) is None


def test_classify_disabled():
    classifier = CollectionClassifier(_config(enabled=False))
    assert classifier.available is False
    assert classifier.classify(["A", "B"]) is None


def test_classify_missing_credentials(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    classifier = CollectionClassifier(_config())
    assert classifier.classify(["A", "B"]) is None
    assert classifier.available is False


def test_classify_schema_binding_error_is_none():
    class _NoStructuredOutput:
        def with_structured_output(self, schema: Any, method: str) -> Any:
            raise NotImplementedError("structured output not supported")

    classifier = CollectionClassifier(_config(), model=_NoStructuredOutput())  # type: ignore[arg-type]
    assert classifier.classify(["A", "B"]) is None

"""Structured output helpers for LangChain chat models.

The classifier asks for a Pydantic schema back. Providers differ in how
that is enforced; native JSON-schema mode is the default everywhere because
tool calling is unreliable on small local models.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.runnables import Runnable
    from pydantic import BaseModel

log = logging.getLogger(__name__)


class StructuredOutputStrategy(StrEnum):
    """How a schema is enforced on model output."""

    JSON_MODE = "json_mode"  # provider-native JSON schema
    TOOL = "tool"  # function/tool calling


PROVIDER_STRATEGY_DEFAULTS: dict[str, StructuredOutputStrategy] = {
    "ollama": StructuredOutputStrategy.JSON_MODE,
    "openai": StructuredOutputStrategy.JSON_MODE,
    "anthropic": StructuredOutputStrategy.TOOL,
}


def get_default_strategy(provider_name: str | None) -> StructuredOutputStrategy:
    if provider_name is None:
        return StructuredOutputStrategy.JSON_MODE
    return PROVIDER_STRATEGY_DEFAULTS.get(
        provider_name.lower(), StructuredOutputStrategy.JSON_MODE
    )


def with_structured_output(
    model: BaseChatModel,
    schema: type[BaseModel],
    provider_name: str | None = None,
    strategy: StructuredOutputStrategy | None = None,
) -> Runnable[Any, Any]:
    """Wrap a chat model so that invoking it yields ``schema`` instances."""
    strategy = strategy or get_default_strategy(provider_name)
    method = "function_calling" if strategy == StructuredOutputStrategy.TOOL else "json_schema"
    log.debug("Structured output: schema=%s method=%s", schema.__name__, method)
    return model.with_structured_output(schema, method=method)


def strip_null_values(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively drop ``None`` values so Pydantic defaults apply instead."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, dict):
            result[key] = strip_null_values(value)
        elif isinstance(value, list):
            result[key] = [
                strip_null_values(v) if isinstance(v, dict) else v for v in value if v is not None
            ]
        else:
            result[key] = value
    return result


def format_validation_errors(errors: list[dict[str, Any]]) -> str:
    """One line per Pydantic error, e.g. ``confidence: Input should be <= 1``."""
    lines = []
    for error in errors:
        loc = ".".join(str(part) for part in error.get("loc", ()))
        msg = error.get("msg", "Unknown error")
        lines.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(lines)


## Tests


def test_get_default_strategy():
    assert get_default_strategy("openai") == StructuredOutputStrategy.JSON_MODE
    assert get_default_strategy("Anthropic") == StructuredOutputStrategy.TOOL
    assert get_default_strategy("unknown") == StructuredOutputStrategy.JSON_MODE
    assert get_default_strategy(None) == StructuredOutputStrategy.JSON_MODE


def test_with_structured_output_method():
    from pydantic import BaseModel

    class Answer(BaseModel):
        value: int = 0

    calls = []

    class _Model:
        def with_structured_output(self, schema, method):
            calls.append((schema, method))
            return "runnable"

    assert with_structured_output(_Model(), Answer, "openai") == "runnable"  # type: ignore[arg-type]
    with_structured_output(_Model(), Answer, "anthropic")  # type: ignore[arg-type]
    assert calls == [(Answer, "json_schema"), (Answer, "function_calling")]


def test_strip_null_values():
    data = {"a": 1, "b": None, "nested": {"x": None, "y": 2}, "items": [{"c": None}, None, 3]}
    assert strip_null_values(data) == {"a": 1, "nested": {"y": 2}, "items": [{}, 3]}


def test_format_validation_errors():
    errors = [
        {"loc": ("confidence",), "msg": "Input should be less than or equal to 1"},
        {"loc": (), "msg": "Invalid JSON"},
    ]
    formatted = format_validation_errors(errors)
    assert formatted == "confidence: Input should be less than or equal to 1; Invalid JSON"

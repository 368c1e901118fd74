"""LLM integration: chat model factory and the batch collection classifier."""

from __future__ import annotations

from media_resolver.llm.classifier import CollectionClassifier, CollectionProfile
from media_resolver.llm.langchain_provider import LangChainProviderError, create_chat_model

__all__ = [
    "CollectionClassifier",
    "CollectionProfile",
    "LangChainProviderError",
    "create_chat_model",
]

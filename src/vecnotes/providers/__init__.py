"""Embedding providers — protocol and implementations."""

from vecnotes.protocols import EmbeddingProvider
from vecnotes.providers.sentence_transformers import SentenceTransformerEmbedding

__all__ = [
    "EmbeddingProvider",
    "SentenceTransformerEmbedding",
]

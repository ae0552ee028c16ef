"""Embedding provider client and the chunk embedding stage."""

from bookrag.embedding.client import EmbeddingClient, EmbeddingError, format_vector_literal
from bookrag.embedding.embedder import ChunkEmbedder

__all__ = ["ChunkEmbedder", "EmbeddingClient", "EmbeddingError", "format_vector_literal"]

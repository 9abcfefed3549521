"""
Embedding components for the sfdocpipe pipeline.

This module contains classes responsible for converting enriched chunks
into fixed-length numerical vectors. Subclasses only talk to their model;
the base class enforces the batch-size limit and checks that exactly one
vector of the configured dimension comes back per chunk.
"""

from abc import ABC, abstractmethod
import hashlib
import logging
import os
from typing import List, Sequence

import numpy as np
import openai
from openai import OpenAI

from ..utils.data_models import EnrichedChunk
from ..utils.errors import (
    ConfigError,
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingRateLimitError,
    EmbeddingTransientError,
)

logger = logging.getLogger(__name__)


class BaseEmbedder(ABC):
    """Abstract base class for all embedder components."""

    def __init__(self, dimensions: int = 1536, max_batch_size: int = 50):
        if max_batch_size < 1:
            raise ConfigError("max_batch_size must be at least 1", component="embedder")
        self.dimensions = dimensions
        self.max_batch_size = max_batch_size

    @abstractmethod
    def _embed_texts(self, texts: List[str]) -> np.ndarray:
        """
        Embeds a list of text strings.

        Args:
            texts (list[str]): The texts to embed, at most max_batch_size.

        Returns:
            np.ndarray: A 2D array where each row is the vector of the text
                        at the same position.
        """
        pass

    def embed(self, chunks: Sequence[EnrichedChunk]) -> List[np.ndarray]:
        """
        Embeds a batch of enriched chunks.

        Returns:
            list[np.ndarray]: One read-only vector per chunk, in input order.

        Raises:
            ConfigError: If the batch is larger than max_batch_size.
            EmbeddingError: If the service returns a malformed result.
        """
        if not chunks:
            logger.warning("Embedder received an empty batch. Returning no vectors.")
            return []
        if len(chunks) > self.max_batch_size:
            raise ConfigError(
                f"Batch of {len(chunks)} chunks exceeds max_batch_size={self.max_batch_size}",
                component="embedder",
            )
        return self._checked_embed([chunk.text for chunk in chunks])

    def embed_query(self, text: str) -> np.ndarray:
        """Embeds a single search query."""
        return self._checked_embed([text])[0]

    def _checked_embed(self, texts: List[str]) -> List[np.ndarray]:
        logger.debug(f"Embedding {len(texts)} texts with {self.__class__.__name__}")
        matrix = np.asarray(self._embed_texts(texts), dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[0] != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} vectors, got array of shape {matrix.shape}",
                component=self.__class__.__name__,
            )
        if matrix.shape[1] != self.dimensions:
            raise EmbeddingError(
                f"Expected vectors of dimension {self.dimensions}, got {matrix.shape[1]}",
                component=self.__class__.__name__,
            )
        vectors = []
        for row in matrix:
            vector = row.copy()
            vector.setflags(write=False)
            vectors.append(vector)
        return vectors


class OpenAIEmbedder(BaseEmbedder):
    """
    An embedder that uses the OpenAI API to generate embeddings.

    Service errors are translated into the pipeline's taxonomy: bad
    credentials become EmbeddingAuthError, throttling becomes
    EmbeddingRateLimitError and network or 5xx faults become
    EmbeddingTransientError.
    """

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        api_key: str = None,
        base_url: str = None,
        timeout: float = 30.0,
        dimensions: int = 1536,
        max_batch_size: int = 50,
    ):
        """
        Initializes the OpenAIEmbedder.

        Args:
            model_name (str): The name of the OpenAI model to use for embedding.
            api_key (str): The API key; falls back to the OPENAI_API_KEY variable.
            base_url (str): Optional OpenAI-compatible endpoint.
            timeout (float): Per-request timeout in seconds.
        """
        super().__init__(dimensions=dimensions, max_batch_size=max_batch_size)
        self.model_name = model_name
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ConfigError(
                "You need an OpenAI API key. Pass it as the 'api_key' argument or set the 'OPENAI_API_KEY' environment variable.",
                component="openai_embedder",
            )
        # Retries belong to the pipeline, not the client.
        self.client = OpenAI(
            api_key=self.api_key, base_url=base_url, timeout=timeout, max_retries=0
        )
        logger.info(f"Initialized OpenAIEmbedder with model '{self.model_name}'.")

    def _embed_texts(self, texts: List[str]) -> np.ndarray:
        kwargs = {"input": texts, "model": self.model_name}
        if self.model_name.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions

        try:
            response = self.client.embeddings.create(**kwargs)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise EmbeddingAuthError(
                f"OpenAI rejected the credentials: {e}", component="openai_embedder"
            ) from e
        except openai.RateLimitError as e:
            raise EmbeddingRateLimitError(
                f"OpenAI rate limit exceeded: {e}", component="openai_embedder"
            ) from e
        except (
            openai.APIConnectionError,
            openai.APITimeoutError,
            openai.InternalServerError,
        ) as e:
            raise EmbeddingTransientError(
                f"Transient OpenAI error: {e}", component="openai_embedder"
            ) from e
        except openai.APIError as e:
            raise EmbeddingError(
                f"OpenAI API error: {e}", component="openai_embedder"
            ) from e

        # The API may return items out of order; `index` is authoritative.
        items = sorted(response.data, key=lambda item: item.index)
        return np.array([item.embedding for item in items])


class SentenceTransformerEmbedder(BaseEmbedder):
    """
    An embedder that runs a sentence-transformers model locally.

    Useful for development runs that should not call a paid API. The
    configured dimensions must match the model's output size.
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        dimensions: int = 384,
        max_batch_size: int = 50,
    ):
        super().__init__(dimensions=dimensions, max_batch_size=max_batch_size)
        self.model_name = model_name
        self.model = self._load_model()

    def _load_model(self):
        """Loads the SentenceTransformer model and handles potential errors."""
        from sentence_transformers import SentenceTransformer

        logger.debug(f"Loading SentenceTransformer model: '{self.model_name}'")
        try:
            model = SentenceTransformer(self.model_name)
            logger.info(
                f"SentenceTransformer model '{self.model_name}' loaded successfully."
            )
            return model
        except Exception as e:
            logger.error(
                f"Failed to load SentenceTransformer model '{self.model_name}'. "
                f"Please ensure the model name is correct and you have an internet connection.",
                exc_info=True,
            )
            raise ConfigError(
                f"Could not load model '{self.model_name}': {e}",
                component="sentence_transformer_embedder",
            ) from e

    def _embed_texts(self, texts: List[str]) -> np.ndarray:
        try:
            return self.model.encode(texts, show_progress_bar=False)
        except Exception as e:
            logger.error(
                f"An error occurred during the embedding process: {e}",
                exc_info=True,
            )
            raise EmbeddingError(
                f"Local embedding failed: {e}",
                component="sentence_transformer_embedder",
            ) from e


class HashEmbedder(BaseEmbedder):
    """
    Deterministic, offline embedder for dry runs and tests.

    Vectors are derived from a SHA-256 seed of the text, so the same text
    always maps to the same unit vector. They carry no semantic meaning.
    """

    def __init__(self, dimensions: int = 1536, max_batch_size: int = 50):
        super().__init__(dimensions=dimensions, max_batch_size=max_batch_size)

    def _vector(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        vector = rng.standard_normal(self.dimensions)
        return vector / np.linalg.norm(vector)

    def _embed_texts(self, texts: List[str]) -> np.ndarray:
        return np.vstack([self._vector(text) for text in texts])

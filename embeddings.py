"""Embedding model management for story matching and consensus grouping.

This module provides text embeddings using a sentence-transformers model.
Embeddings back the similarity tier of the story matcher and the
consensus feed.

Model: BAAI/bge-small-en-v1.5 (default, see EMBEDDING_MODEL)
    - 384 dimensions
    - Fast inference on CPU

Usage:
    >>> from embeddings import try_encode
    >>> vector = try_encode("OpenAI releases GPT-5")  # list[float] or None
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

# Model configuration
MODEL_NAME = "BAAI/bge-small-en-v1.5"
MAX_INPUT_CHARS = 8000


class EmbeddingModel:
    """Wrapper for sentence-transformers embedding model.

    The model is loaded on first use and reused for subsequent calls.

    Attributes:
        model_name: HuggingFace model identifier
    """

    def __init__(self, model_name: str = MODEL_NAME):
        self.model_name = model_name
        self._model = None

    def _load_model(self):
        """Lazily load the sentence-transformers model."""
        if self._model is None:
            logger.info("Loading embedding model: %s", self.model_name)
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
            logger.info("Embedding model loaded | model=%s", self.model_name)
        return self._model

    def encode(self, text: str) -> np.ndarray:
        """Encode a single text string to a normalized float32 vector."""
        model = self._load_model()
        embedding = model.encode(text[:MAX_INPUT_CHARS], convert_to_numpy=True, normalize_embeddings=True)
        return embedding.astype(np.float32)

    def encode_batch(self, texts: list[str], batch_size: int = 32) -> np.ndarray:
        """Encode multiple texts to embedding vectors.

        Returns:
            numpy array of shape (len(texts), dim) with float32 values
        """
        if not texts:
            return np.array([], dtype=np.float32).reshape(0, 0)

        model = self._load_model()
        embeddings = model.encode(
            [t[:MAX_INPUT_CHARS] for t in texts],
            convert_to_numpy=True,
            normalize_embeddings=True,
            batch_size=batch_size,
            show_progress_bar=False,
        )
        return embeddings.astype(np.float32)


# Process-wide instance, replaced if a different model is requested
_embedding_model: EmbeddingModel | None = None


def get_embeddings(model_name: str = MODEL_NAME) -> EmbeddingModel:
    """Get the process-wide embedding model instance (lazily created)."""
    global _embedding_model
    if _embedding_model is None or _embedding_model.model_name != model_name:
        _embedding_model = EmbeddingModel(model_name)
    return _embedding_model


def encode_text(text: str, model_name: str = MODEL_NAME) -> np.ndarray:
    """Convenience function to encode a single text."""
    return get_embeddings(model_name).encode(text)


def try_encode(text: str, model_name: str = MODEL_NAME) -> list[float] | None:
    """Best-effort embedding: returns None instead of raising.

    Embedding is optional everywhere it is used, so a missing model,
    download failure or encode error only disables the similarity paths.
    """
    if not text or not text.strip():
        return None
    try:
        return encode_text(text, model_name).tolist()
    except Exception as e:
        logger.warning("Embedding generation failed | model=%s error=%s", model_name, e)
        return None

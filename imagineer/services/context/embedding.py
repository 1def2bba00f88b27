"""Shared sentence embedding model for campaign content search."""

import asyncio
from typing import List

from sentence_transformers import SentenceTransformer

from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

EMBEDDING_MODEL = "all-MiniLM-L6-v2"

# Module-level singleton, loading the model is expensive
_embedding_model: SentenceTransformer | None = None


def _get_embedding_model() -> SentenceTransformer:
    global _embedding_model
    if _embedding_model is None:
        LOGGER.info(f"Loading embedding model: {EMBEDDING_MODEL}")
        _embedding_model = SentenceTransformer(EMBEDDING_MODEL)
    return _embedding_model


async def embed_texts(texts: List[str]) -> List[List[float]]:
    """Embed strings off the event loop (384 dimensions each)."""
    if not texts:
        return []
    model = _get_embedding_model()
    embeddings = await asyncio.to_thread(model.encode, texts)
    return [emb.tolist() for emb in embeddings]

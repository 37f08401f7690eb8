"""
Embedding arithmetic shared by the profile store and similarity scoring.
"""

from typing import List, Optional, Sequence

import numpy as np

from ..errors import MalformedEmbeddingError


def average_embeddings(embeddings: Sequence[Sequence[float]]) -> List[float]:
    """
    Element-wise arithmetic mean of equal-length embeddings.

    Raises:
        MalformedEmbeddingError: no embeddings, an empty one, or mismatched lengths
    """
    if not embeddings:
        raise MalformedEmbeddingError("No embeddings to average")

    lengths = {len(e) for e in embeddings}
    if len(lengths) != 1:
        raise MalformedEmbeddingError(f"Embedding lengths differ: {sorted(lengths)}")
    if 0 in lengths:
        raise MalformedEmbeddingError("Embedding is empty")

    return np.mean(np.asarray(embeddings, dtype=np.float64), axis=0).tolist()


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity; 0.0 for missing, empty, mismatched or zero-norm vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0

    return float(np.dot(va, vb) / norm)


def similarity_score(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity clamped to [0, 1] for reporting clone fidelity."""
    return min(1.0, max(0.0, cosine_similarity(a, b)))

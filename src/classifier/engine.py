"""
Matching Engine
===============

Pure functions for exact nearest-neighbour matching of a query embedding
against the cached example embeddings. Nothing here performs I/O, so the
functions are safe to call from any number of threads against an immutable
snapshot.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from common.models import EmbeddingSnapshot, Match


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, in ``[-1, 1]``.

    Vectors of different lengths are compared over the shorter length.
    Returns ``0.0`` when either vector has zero magnitude.
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    length = min(vec_a.shape[0], vec_b.shape[0])
    if length == 0:
        return 0.0
    vec_a = vec_a[:length]
    vec_b = vec_b[:length]

    norm_a = float(np.dot(vec_a, vec_a))
    norm_b = float(np.dot(vec_b, vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = float(np.dot(vec_a, vec_b)) / (np.sqrt(norm_a) * np.sqrt(norm_b))
    return max(-1.0, min(1.0, score))


def find_best_match(query_vector: Sequence[float], snapshot: EmbeddingSnapshot) -> Match:
    """
    Return the category of the most similar example.

    Categories and their examples are scanned in snapshot order and the best
    score is only replaced on a strictly greater score, so on ties the first
    example seen wins. An empty snapshot yields ``Match(None, -1.0)``.
    """
    query = np.asarray(query_vector, dtype=np.float64)
    best = Match(label=None, score=-1.0)
    for label, examples in snapshot.items():
        for example in examples:
            score = cosine_similarity(query, example.vector)
            if score > best.score:
                best = Match(label=label, score=score)
    return best

"""
Deterministic hashing embedding model.

Stands in for a learned text encoder in tests and offline runs: every token
maps to a fixed pseudo-random unit vector seeded by its SHA-256 digest, and
a text is the normalised sum of its token vectors. Texts sharing tokens are
therefore similar.
"""

import hashlib
import re
from functools import lru_cache

import numpy as np

from toolweave.domain.interfaces import EmbeddingModelInterface

TOKEN_PATTERN = re.compile(r"[a-z0-9_]+")


class HashEmbeddingModel(EmbeddingModelInterface):
    """Bag-of-tokens embedding with hashed token vectors."""

    def __init__(self, dimension: int = 1024):
        if dimension <= 0:
            raise ValueError("dimension must be > 0")
        self._dimension = dimension
        self._token_vector = lru_cache(maxsize=4096)(self._make_token_vector)

    @property
    def dimension(self) -> int:
        return self._dimension

    def _make_token_vector(self, token: str) -> np.ndarray:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
        vector = rng.standard_normal(self._dimension)
        vector /= np.linalg.norm(vector)
        vector.setflags(write=False)
        return vector

    def encode(self, text: str) -> np.ndarray:
        tokens = TOKEN_PATTERN.findall(text.lower())
        if not tokens:
            return np.zeros(self._dimension)
        total = np.sum([self._token_vector(token) for token in tokens], axis=0)
        norm = np.linalg.norm(total)
        return total / norm if norm > 0 else total

"""Brute-force cosine similarity index over capability embeddings."""

import threading

import numpy as np

from toolweave.domain.interfaces import VectorSearchInterface


class InMemoryVectorSearch(VectorSearchInterface):
    """Exact nearest-neighbour search; fine for thousands of vectors."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: list[str] = []
        self._vectors: dict[str, np.ndarray] = {}

    def upsert(self, item_id: str, embedding: np.ndarray) -> None:
        vector = np.asarray(embedding, dtype=np.float64)
        norm = np.linalg.norm(vector)
        with self._lock:
            if item_id not in self._vectors:
                self._ids.append(item_id)
            self._vectors[item_id] = vector / norm if norm > 0 else vector

    def remove(self, item_id: str) -> None:
        with self._lock:
            if self._vectors.pop(item_id, None) is not None:
                self._ids.remove(item_id)

    def __len__(self) -> int:
        return len(self._ids)

    def search(self, embedding: np.ndarray, k: int) -> list[tuple[str, float]]:
        with self._lock:
            ids = list(self._ids)
            if not ids or k <= 0:
                return []
            matrix = np.stack([self._vectors[item_id] for item_id in ids])

        query = np.asarray(embedding, dtype=np.float64)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        similarities = matrix @ (query / norm)
        ranked = sorted(
            zip(ids, (float(s) for s in similarities), strict=True),
            key=lambda item: (-item[1], item[0]),
        )
        return ranked[:k]

"""
Dense vector retrieval by cosine similarity.

Brute-force exact search: every stored embedding is scored against the query.
Embeddings are stacked into a single (N, dim) matrix of unit rows on the first
read after a write, so a query is one matrix-vector product.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np

from rank_core.errors import DimensionMismatch, EmptyInput
from rank_core.ranking_utils import check_doc_id, check_top_k, select_top_k

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


def unit_rows(matrix: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Scale each row to unit L2 norm; all-zero rows stay zero.

    Rows are divided by their largest magnitude before the norm is taken, so
    vectors with tiny (or huge) components neither underflow nor overflow.
    """
    matrix = np.atleast_2d(np.asarray(matrix, dtype=np.float64))
    unit = np.zeros_like(matrix)
    peak = np.max(np.abs(matrix), axis=1) if matrix.shape[1] else np.zeros(matrix.shape[0])
    nonzero = peak > 0
    scaled = matrix[nonzero] / peak[nonzero, np.newaxis]
    unit[nonzero] = scaled / np.linalg.norm(scaled, axis=1)[:, np.newaxis]
    return unit


def cosine_similarity(a: NDArray[np.float64], b: NDArray[np.float64]) -> float:
    """
    Cosine similarity dot(a, b) / (|a| * |b|), clipped to [-1, 1].

    Only an all-zero vector counts as zero-norm; it has similarity 0 with
    everything. Any other vector, however small, has similarity 1 with itself.
    """
    unit_a, unit_b = unit_rows(np.vstack([np.ravel(a), np.ravel(b)]))
    return float(np.clip(np.dot(unit_a, unit_b), -1.0, 1.0))


class DenseRetriever:
    """
    Exact cosine-similarity retriever over fixed-dimension embeddings.

    The first inserted vector fixes the dimension; every later insertion and
    every query must match it.

    Thread safety: ``add_document`` must not run concurrently with any other
    call on the same instance. Concurrent reads (``score``, ``retrieve``) are safe.
    """

    def __init__(self):
        self._ids: list[int] = []
        self._vectors: list[NDArray[np.float64]] = []
        self._position: dict[int, int] = {}
        self._dimension: int | None = None

        # Stacked unit-norm view, rebuilt lazily after writes
        self._matrix: NDArray[np.float64] | None = None
        self._id_array: NDArray[np.int64] | None = None
        self._cache_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._position

    @property
    def num_docs(self) -> int:
        return len(self._ids)

    @property
    def dimension(self) -> int | None:
        """Embedding dimension, or None before the first insertion."""
        return self._dimension

    def doc_ids(self) -> list[int]:
        return list(self._ids)

    def _as_vector(self, vector: Sequence[float] | NDArray[np.float64], what: str) -> NDArray[np.float64]:
        arr = np.asarray(vector, dtype=np.float64).reshape(-1)
        if arr.size == 0:
            raise EmptyInput(what)
        if self._dimension is not None and arr.size != self._dimension:
            raise DimensionMismatch(self._dimension, arr.size)
        return arr

    def add_document(self, doc_id: int, vector: Sequence[float] | NDArray[np.float64]) -> None:
        """
        Index a document embedding. Re-adding an existing id replaces its vector.

        Raises:
            EmptyInput: the vector has no components.
            DimensionMismatch: the vector's length differs from the fixed dimension.
        """
        doc_id = check_doc_id(doc_id)
        arr = self._as_vector(vector, "document embedding").copy()
        if self._dimension is None:
            self._dimension = arr.size

        pos = self._position.get(doc_id)
        if pos is None:
            self._position[doc_id] = len(self._ids)
            self._ids.append(doc_id)
            self._vectors.append(arr)
        else:
            logger.warning("Replacing embedding for existing document %d", doc_id)
            self._vectors[pos] = arr
        self._matrix = None

    def get_document(self, doc_id: int) -> NDArray[np.float64] | None:
        pos = self._position.get(doc_id)
        return None if pos is None else self._vectors[pos]

    def _stacked(self) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
        if self._matrix is None:
            with self._cache_lock:
                if self._matrix is None:
                    self._id_array = np.array(self._ids, dtype=np.int64)
                    self._matrix = unit_rows(np.vstack(self._vectors))
        return self._id_array, self._matrix

    def score(self, doc_id: int, query_vector: Sequence[float] | NDArray[np.float64]) -> float | None:
        """Cosine similarity of the query with one document, or None if the id is unknown."""
        pos = self._position.get(doc_id)
        if pos is None:
            return None
        query = self._as_vector(query_vector, "query embedding")
        return cosine_similarity(self._vectors[pos], query)

    def retrieve(
        self, query_vector: Sequence[float] | NDArray[np.float64], top_k: int
    ) -> list[tuple[int, float]]:
        """
        Top-k documents by cosine similarity to the query.

        All documents are candidates, including those with negative similarity.

        Raises:
            EmptyInput: the query is empty or no documents are indexed.
            DimensionMismatch: the query's length differs from the fixed dimension.
            InvalidK: top_k is negative.
        """
        query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
        if query.size == 0:
            raise EmptyInput("query embedding")
        if not self._ids:
            raise EmptyInput("dense index")
        query = self._as_vector(query, "query embedding")
        top_k = check_top_k(top_k)

        doc_ids, unit_matrix = self._stacked()
        # All-zero rows (or an all-zero query) score 0 by convention
        scores = np.clip(unit_matrix @ unit_rows(query)[0], -1.0, 1.0)
        return select_top_k(doc_ids, scores, top_k)


__all__ = ["DenseRetriever", "cosine_similarity", "unit_rows"]

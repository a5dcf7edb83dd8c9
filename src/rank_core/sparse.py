"""
Sparse vectors and sparse dot-product retrieval.

A sparse vector stores parallel arrays of indices and values, where indices are
term ids (vocabulary positions) and values are term weights (TF-IDF, BM25,
SPLADE scores). Only non-zero coordinates are stored, so dot products over
large vocabularies cost O(nnz) rather than O(vocab_size).

Usage:
    from rank_core.sparse import SparseRetriever, SparseVector, sparse_dot_product

    retriever = SparseRetriever()
    retriever.add_document(0, SparseVector([0, 1, 2], [1.0, 0.5, 0.3]))
    results = retriever.retrieve(SparseVector([0, 1], [1.0, 1.0]), top_k=10)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import TYPE_CHECKING

import numpy as np

from rank_core.errors import EmptyInput, InvalidK, LengthMismatch, UnsortedIndices
from rank_core.ranking_utils import check_doc_id, check_top_k, select_top_k

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


# =============================================================================
# Sparse Vector
# =============================================================================


class SparseVector:
    """
    Sparse vector as parallel index/value arrays.

    Args:
        indices: Coordinate indices, strictly increasing.
        values: Coordinate values, same length as indices.
        validate: Check the ordering and length invariant. With validate=False the
            invariant becomes the caller's obligation; a violating vector gives
            undefined dot products rather than an error.

    Raises:
        LengthMismatch: indices and values differ in length (validate=True).
        UnsortedIndices: indices are not strictly increasing (validate=True).
    """

    __slots__ = ("indices", "values")

    def __init__(
        self,
        indices: Sequence[int] | NDArray[np.int64],
        values: Sequence[float] | NDArray[np.float64],
        validate: bool = True,
    ):
        self.indices = np.asarray(indices, dtype=np.int64).reshape(-1)
        self.values = np.asarray(values, dtype=np.float64).reshape(-1)
        if validate:
            self._validate()

    def _validate(self) -> None:
        if len(self.indices) != len(self.values):
            raise LengthMismatch(len(self.indices), len(self.values), "indices and values")
        if len(self.indices) > 1:
            steps = np.diff(self.indices)
            bad = np.flatnonzero(steps <= 0)
            if len(bad):
                pos = int(bad[0]) + 1
                raise UnsortedIndices(pos, int(self.indices[pos - 1]), int(self.indices[pos]))

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[int, float]], validate: bool = True) -> SparseVector:
        """Build from (index, value) pairs, e.g. ``[(1, 1.0), (3, 2.0)]``."""
        pairs = list(pairs)
        return cls([i for i, _ in pairs], [v for _, v in pairs], validate=validate)

    @property
    def nnz(self) -> int:
        """Number of stored coordinates."""
        return len(self.indices)

    def __len__(self) -> int:
        return self.nnz

    def __iter__(self) -> Iterator[tuple[int, float]]:
        return zip(self.indices.tolist(), self.values.tolist())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparseVector):
            return NotImplemented
        same_indices = np.array_equal(self.indices, other.indices)
        return bool(same_indices and np.array_equal(self.values, other.values))

    __hash__ = None  # mutable arrays

    def __repr__(self) -> str:
        return f"SparseVector(indices={self.indices.tolist()}, values={self.values.tolist()})"

    def prune(self, threshold: float) -> SparseVector:
        """Keep only coordinates whose value is strictly greater than threshold."""
        keep = self.values > threshold
        return SparseVector(self.indices[keep], self.values[keep], validate=False)

    def top_k(self, k: int) -> SparseVector:
        """
        Keep the k coordinates with the largest magnitude.

        The result stays in ascending index order. Useful for capping learned
        sparse representations (SPLADE keeps a few hundred terms).
        """
        if k < 0:
            raise InvalidK(k)
        if k >= self.nnz:
            return self.copy()
        by_magnitude = np.argsort(-np.abs(self.values), kind="stable")[:k]
        keep = np.sort(by_magnitude)
        return SparseVector(self.indices[keep], self.values[keep], validate=False)

    def norm(self) -> float:
        """L2 norm."""
        peak = float(np.max(np.abs(self.values))) if self.nnz else 0.0
        if peak == 0.0:
            return 0.0
        # Scale by the largest magnitude so tiny components do not underflow
        return peak * float(np.linalg.norm(self.values / peak))

    def normalize(self) -> SparseVector:
        """Scale to unit L2 norm. An all-zero vector normalizes to the empty vector."""
        peak = float(np.max(np.abs(self.values))) if self.nnz else 0.0
        if peak == 0.0:
            return SparseVector([], [], validate=False)
        scaled = self.values / peak
        return SparseVector(self.indices.copy(), scaled / np.linalg.norm(scaled), validate=False)

    def to_dense(self, dim: int | None = None) -> NDArray[np.float64]:
        """Scatter into a dense array of length dim (default: max index + 1)."""
        if dim is None:
            dim = int(self.indices[-1]) + 1 if self.nnz else 0
        dense = np.zeros(dim, dtype=np.float64)
        dense[self.indices] = self.values
        return dense

    def copy(self) -> SparseVector:
        return SparseVector(self.indices.copy(), self.values.copy(), validate=False)


def sparse_dot_product(a: SparseVector, b: SparseVector) -> float:
    """
    Dot product of two sparse vectors by linear merge-join.

    Walks both ascending index arrays once: O(|a| + |b|). Returns 0.0 when the
    vectors share no index.
    """
    a_idx, a_val = a.indices.tolist(), a.values.tolist()
    b_idx, b_val = b.indices.tolist(), b.values.tolist()
    i = j = 0
    n_a, n_b = len(a_idx), len(b_idx)
    result = 0.0
    while i < n_a and j < n_b:
        ai, bj = a_idx[i], b_idx[j]
        if ai < bj:
            i += 1
        elif ai > bj:
            j += 1
        else:
            result += a_val[i] * b_val[j]
            i += 1
            j += 1
    return result


# =============================================================================
# Sparse Retriever
# =============================================================================


class SparseRetriever:
    """
    Brute-force retriever scoring every document by sparse dot product.

    Vectors are index-addressed, so documents and queries may have any
    vocabulary footprint; there is no fixed dimension.

    Thread safety: ``add_document`` must not run concurrently with any other
    call on the same instance. Concurrent reads (``score``, ``retrieve``) are safe.
    """

    def __init__(self):
        self._documents: dict[int, SparseVector] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._documents

    @property
    def num_docs(self) -> int:
        return len(self._documents)

    def doc_ids(self) -> list[int]:
        return list(self._documents)

    def add_document(self, doc_id: int, vector: SparseVector) -> None:
        """Index a document. Re-adding an existing id replaces its vector."""
        doc_id = check_doc_id(doc_id)
        if doc_id in self._documents:
            logger.warning("Replacing sparse vector for existing document %d", doc_id)
        self._documents[doc_id] = vector

    def get_document(self, doc_id: int) -> SparseVector | None:
        return self._documents.get(doc_id)

    def score(self, doc_id: int, query_vector: SparseVector) -> float | None:
        """Dot product of the query with one document, or None if the id is unknown."""
        doc_vector = self._documents.get(doc_id)
        if doc_vector is None:
            return None
        return sparse_dot_product(query_vector, doc_vector)

    def retrieve(self, query_vector: SparseVector, top_k: int) -> list[tuple[int, float]]:
        """
        Top-k documents by dot product with the query.

        Only documents with a finite, strictly positive score are returned, so
        documents sharing no index with the query never appear.

        Raises:
            EmptyInput: the query has no coordinates or the retriever is empty.
            InvalidK: top_k is negative.
        """
        if query_vector.nnz == 0:
            raise EmptyInput("query vector")
        if not self._documents:
            raise EmptyInput("sparse index")
        top_k = check_top_k(top_k)

        doc_ids = np.fromiter(self._documents.keys(), dtype=np.int64, count=len(self._documents))
        scores = np.array(
            [sparse_dot_product(query_vector, vec) for vec in self._documents.values()],
            dtype=np.float64,
        )
        keep = np.isfinite(scores) & (scores > 0.0)
        logger.debug("Sparse query matched %d of %d documents", int(keep.sum()), len(scores))
        return select_top_k(doc_ids[keep], scores[keep], top_k)


__all__ = [
    "SparseVector",
    "sparse_dot_product",
    "SparseRetriever",
]

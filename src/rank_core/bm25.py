"""
BM25 inverted index.

Okapi BM25:

    BM25(q, d) = Σ IDF(t) * tf(t, d) * (k1 + 1) / (tf(t, d) + k1 * (1 - b + b * |d| / avgdl))
    IDF(t)     = ln((N - df(t) + 0.5) / (df(t) + 0.5) + 1)

The index is built incrementally: every ``add_document`` updates the postings
and the corpus statistics (N, document lengths, avgdl) owned by the instance.
On the first read after a write the postings are frozen into a scipy CSR
term-document matrix so scoring is vectorized over candidate documents.

Variants (Bm25Variant):
    STANDARD - the formula above
    BM25L    - Lv & Zhai: shifts the length-normalized tf c = tf / norm by delta,
               (k1 + 1) * (c + delta) / (k1 + c + delta)
    BM25PLUS - Lv & Zhai: adds a lower bound delta to the saturated tf of every
               matching term

Usage:
    from rank_core.bm25 import Bm25Params, InvertedIndex

    index = InvertedIndex()
    index.add_document(0, ["the", "quick", "brown", "fox"])
    index.add_document(1, ["the", "lazy", "dog"])
    results = index.retrieve(["quick", "fox"], top_k=10)
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import csr_matrix

from rank_core.config import Config
from rank_core.errors import EmptyInput, InvalidParameter
from rank_core.ranking_utils import check_doc_id, check_top_k, select_top_k

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


# =============================================================================
# Parameters
# =============================================================================


class Bm25Variant(str, Enum):
    STANDARD = "standard"
    BM25L = "bm25l"
    BM25PLUS = "bm25plus"


@dataclass(frozen=True)
class Bm25Params:
    """
    BM25 scoring parameters.

    Attributes:
        k1: Term frequency saturation, > 0.
        b: Length normalization strength, in [0, 1].
        variant: Scoring variant.
        delta: Variant shift; None picks the variant's default
            (0.5 for BM25L, 1.0 for BM25+). Ignored by STANDARD.
    """

    k1: float = Config.k1
    b: float = Config.b
    variant: Bm25Variant = Bm25Variant.STANDARD
    delta: float | None = None

    def __post_init__(self):
        object.__setattr__(self, "variant", Bm25Variant(self.variant))
        if not (self.k1 > 0 and math.isfinite(self.k1)):
            raise InvalidParameter("k1", self.k1, "must be a positive finite number")
        if not 0.0 <= self.b <= 1.0:
            raise InvalidParameter("b", self.b, "must lie in [0, 1]")
        if self.delta is not None and not (self.delta >= 0 and math.isfinite(self.delta)):
            raise InvalidParameter("delta", self.delta, "must be a non-negative finite number")

    @classmethod
    def bm25l(cls, k1: float = Config.k1, b: float = Config.b, delta: float | None = None) -> Bm25Params:
        return cls(k1=k1, b=b, variant=Bm25Variant.BM25L, delta=delta)

    @classmethod
    def bm25plus(cls, k1: float = Config.k1, b: float = Config.b, delta: float | None = None) -> Bm25Params:
        return cls(k1=k1, b=b, variant=Bm25Variant.BM25PLUS, delta=delta)

    @property
    def effective_delta(self) -> float:
        if self.variant is Bm25Variant.STANDARD:
            return 0.0
        if self.delta is not None:
            return self.delta
        if self.variant is Bm25Variant.BM25L:
            return Config.bm25l_delta
        return Config.bm25plus_delta


# =============================================================================
# Term Scoring Kernel
# =============================================================================


def bm25_idf(df: float | NDArray[np.float64], N: int) -> float | NDArray[np.float64]:
    """Non-negative BM25 IDF: ln((N - df + 0.5) / (df + 0.5) + 1), clamped at 0."""
    return np.maximum(np.log((N - df + 0.5) / (df + 0.5) + 1.0), 0.0)


def length_norm(doc_lengths: NDArray[np.float64], avgdl: float, b: float) -> NDArray[np.float64]:
    """Pivoted length normalization 1 - b + b * dl / avgdl."""
    if avgdl <= 0:
        return np.full_like(doc_lengths, 1.0 - b, dtype=np.float64)
    return 1.0 - b + b * (doc_lengths / avgdl)


def tf_component(
    tf: NDArray[np.float64],
    norm: NDArray[np.float64],
    params: Bm25Params,
) -> NDArray[np.float64]:
    """
    Saturated term-frequency factor for each (term, document) cell.

    Cells with tf == 0 contribute nothing under every variant.
    """
    k1 = params.k1
    delta = params.effective_delta
    with np.errstate(divide="ignore", invalid="ignore"):
        if params.variant is Bm25Variant.BM25L:
            c = tf / np.maximum(norm, Config.epsilon)
            out = (k1 + 1.0) * (c + delta) / (k1 + c + delta)
        else:
            out = tf * (k1 + 1.0) / (tf + k1 * norm)
            if params.variant is Bm25Variant.BM25PLUS:
                out = out + delta
    return np.where(tf > 0, out, 0.0)


# =============================================================================
# Inverted Index
# =============================================================================


@dataclass(frozen=True)
class _Snapshot:
    """Read-optimized view of the postings, valid until the next write."""

    doc_ids: NDArray[np.int64]
    vocab: dict[str, int]
    tf_matrix: csr_matrix  # (vocab_size, N)
    doc_frequency: NDArray[np.float64]  # (vocab_size,)
    doc_lengths: NDArray[np.float64]  # (N,)


class InvertedIndex:
    """
    Inverted index with BM25 scoring.

    Stores term -> {doc_id: term frequency} postings together with per-document
    lengths. Document frequency of a term is the size of its posting list.

    Re-adding an existing document id replaces that document: its old postings
    and length are removed before the new terms are indexed.

    Thread safety: ``add_document`` must not run concurrently with any other
    call on the same instance. Concurrent reads (``idf``, ``score``,
    ``retrieve``) are safe.
    """

    def __init__(self):
        self._postings: dict[str, dict[int, int]] = {}
        self._doc_lengths: dict[int, int] = {}
        self._doc_terms: dict[int, tuple[str, ...]] = {}
        self._total_length = 0

        self._snapshot: _Snapshot | None = None
        self._snapshot_lock = threading.Lock()

    # ----- Corpus statistics -----

    def __len__(self) -> int:
        return len(self._doc_lengths)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._doc_lengths

    @property
    def num_docs(self) -> int:
        return len(self._doc_lengths)

    @property
    def avg_doc_length(self) -> float:
        n = len(self._doc_lengths)
        return self._total_length / n if n else 0.0

    @property
    def total_terms(self) -> int:
        """Collection size: the sum of all document lengths."""
        return self._total_length

    @property
    def vocabulary_size(self) -> int:
        return len(self._postings)

    def doc_ids(self) -> list[int]:
        return list(self._doc_lengths)

    def document_length(self, doc_id: int) -> int:
        return self._doc_lengths.get(doc_id, 0)

    def document_frequency(self, term: str) -> int:
        return len(self._postings.get(term, ()))

    def collection_frequency(self, term: str) -> int:
        """Occurrences of a term across the whole collection."""
        return sum(self._postings.get(term, {}).values())

    def term_frequency(self, doc_id: int, term: str) -> int:
        return self._postings.get(term, {}).get(doc_id, 0)

    def postings(self, term: str) -> Mapping[int, int]:
        """Read-only {doc_id: tf} view of one term's posting list."""
        return MappingProxyType(self._postings.get(term, {}))

    # ----- Writes -----

    def add_document(self, doc_id: int, terms: Sequence[str]) -> None:
        """
        Index a tokenized document.

        Args:
            doc_id: Non-negative document identifier.
            terms: Already-normalized tokens, in document order.
        """
        doc_id = check_doc_id(doc_id)
        if doc_id in self._doc_lengths:
            logger.warning("Replacing postings for existing document %d", doc_id)
            self._remove(doc_id)

        counts = Counter(terms)
        for term, count in counts.items():
            self._postings.setdefault(term, {})[doc_id] = count
        self._doc_terms[doc_id] = tuple(counts)
        self._doc_lengths[doc_id] = len(terms)
        self._total_length += len(terms)
        self._snapshot = None

    def _remove(self, doc_id: int) -> None:
        for term in self._doc_terms.pop(doc_id):
            plist = self._postings[term]
            del plist[doc_id]
            if not plist:
                del self._postings[term]
        self._total_length -= self._doc_lengths.pop(doc_id)

    # ----- Reads -----

    def _frozen(self) -> _Snapshot:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._snapshot_lock:
            if self._snapshot is None:
                self._snapshot = self._build_snapshot()
            return self._snapshot

    def _build_snapshot(self) -> _Snapshot:
        doc_ids = np.fromiter(self._doc_lengths.keys(), dtype=np.int64, count=len(self._doc_lengths))
        col_of = {doc_id: col for col, doc_id in enumerate(doc_ids.tolist())}

        vocab: dict[str, int] = {}
        rows: list[int] = []
        cols: list[int] = []
        data: list[int] = []
        for tid, (term, plist) in enumerate(self._postings.items()):
            vocab[term] = tid
            for doc_id, tf in plist.items():
                rows.append(tid)
                cols.append(col_of[doc_id])
                data.append(tf)

        tf_matrix = csr_matrix(
            (np.asarray(data, dtype=np.float64), (rows, cols)),
            shape=(len(vocab), len(doc_ids)),
        )
        doc_frequency = np.diff(tf_matrix.indptr).astype(np.float64)
        doc_lengths = np.array([self._doc_lengths[d] for d in doc_ids.tolist()], dtype=np.float64)
        return _Snapshot(doc_ids, vocab, tf_matrix, doc_frequency, doc_lengths)

    def idf(self, term: str) -> float:
        """IDF of a term; 0.0 for terms not in the index."""
        df = len(self._postings.get(term, ()))
        if df == 0:
            return 0.0
        return float(bm25_idf(float(df), self.num_docs))

    def score(
        self,
        doc_id: int,
        query_terms: Sequence[str],
        params: Bm25Params | None = None,
    ) -> float | None:
        """BM25 score of one document, or None if the id is unknown."""
        if doc_id not in self._doc_lengths:
            return None
        params = params or Bm25Params()
        norm = length_norm(
            np.array([self._doc_lengths[doc_id]], dtype=np.float64), self.avg_doc_length, params.b
        )
        s = 0.0
        for term in query_terms:
            tf_val = self.term_frequency(doc_id, term)
            if tf_val == 0:
                continue
            s += self.idf(term) * float(tf_component(np.array([float(tf_val)]), norm, params)[0])
        return s

    def retrieve(
        self,
        query_terms: Sequence[str],
        top_k: int,
        params: Bm25Params | None = None,
    ) -> list[tuple[int, float]]:
        """
        Top-k documents by BM25 score.

        Only documents containing at least one query term are scored; only
        strictly positive scores are returned. Repeated query terms count
        once per occurrence.

        Raises:
            EmptyInput: the query is empty or the index holds no documents.
            InvalidK: top_k is negative.
        """
        if len(query_terms) == 0:
            raise EmptyInput("query")
        if not self._doc_lengths:
            raise EmptyInput("index")
        top_k = check_top_k(top_k)
        params = params or Bm25Params()

        snap = self._frozen()
        query_counts = Counter(t for t in query_terms if t in snap.vocab)
        if not query_counts:
            return []
        term_ids = [snap.vocab[t] for t in query_counts]
        weights = np.array(list(query_counts.values()), dtype=np.float64)

        term_rows = snap.tf_matrix[term_ids]
        candidates = np.unique(term_rows.indices)
        logger.debug("BM25 query with %d terms matched %d candidates", len(term_ids), len(candidates))

        tf_block = term_rows[:, candidates].toarray()  # (num_terms, num_candidates)
        norms = length_norm(snap.doc_lengths[candidates], self.avg_doc_length, params.b)
        idf_values = bm25_idf(snap.doc_frequency[term_ids], len(snap.doc_ids))
        term_scores = tf_component(tf_block, norms[np.newaxis, :], params)
        scores = np.sum((weights * idf_values)[:, np.newaxis] * term_scores, axis=0)

        keep = np.isfinite(scores) & (scores > 0.0)
        return select_top_k(snap.doc_ids[candidates][keep], scores[keep], top_k)


__all__ = [
    "Bm25Variant",
    "Bm25Params",
    "InvertedIndex",
    "bm25_idf",
    "length_norm",
    "tf_component",
]

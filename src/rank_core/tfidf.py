"""
TF-IDF scoring over an InvertedIndex.

Reuses the postings and corpus statistics of the BM25 index, so one index
serves both lexical scorers:

    TF-IDF(q, d) = Σ tf(t, d) * idf(t)

    tf:  LINEAR      raw count
         LOG_SCALED  1 + ln(count)
    idf: STANDARD    ln(N / df)
         SMOOTHED    ln(1 + (N - df + 0.5) / (df + 0.5))
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np

from rank_core.bm25 import InvertedIndex
from rank_core.errors import EmptyInput
from rank_core.ranking_utils import check_top_k, select_top_k

logger = logging.getLogger(__name__)


class TfVariant(str, Enum):
    LINEAR = "linear"
    LOG_SCALED = "log_scaled"


class IdfVariant(str, Enum):
    STANDARD = "standard"
    SMOOTHED = "smoothed"


@dataclass(frozen=True)
class TfIdfParams:
    tf_variant: TfVariant = TfVariant.LOG_SCALED
    idf_variant: IdfVariant = IdfVariant.STANDARD

    def __post_init__(self):
        # Accept plain strings ("linear", "smoothed") from callers
        object.__setattr__(self, "tf_variant", TfVariant(self.tf_variant))
        object.__setattr__(self, "idf_variant", IdfVariant(self.idf_variant))

    @classmethod
    def linear(cls) -> TfIdfParams:
        return cls(tf_variant=TfVariant.LINEAR, idf_variant=IdfVariant.STANDARD)

    @classmethod
    def smoothed(cls) -> TfIdfParams:
        return cls(tf_variant=TfVariant.LOG_SCALED, idf_variant=IdfVariant.SMOOTHED)


def tf_weight(count: int, variant: TfVariant) -> float:
    if count <= 0:
        return 0.0
    if variant is TfVariant.LINEAR:
        return float(count)
    return 1.0 + math.log(count)


def idf_weight(num_docs: int, df: int, variant: IdfVariant) -> float:
    """IDF for a term with document frequency df; 0.0 when the term is unseen."""
    if df == 0 or num_docs == 0:
        return 0.0
    if variant is IdfVariant.STANDARD:
        return math.log(num_docs / df)
    return math.log(1.0 + (num_docs - df + 0.5) / (df + 0.5))


def score_tfidf(
    index: InvertedIndex,
    doc_id: int,
    query_terms: Sequence[str],
    params: TfIdfParams | None = None,
) -> float | None:
    """TF-IDF score of one document, or None if the id is not indexed."""
    if doc_id not in index:
        return None
    params = params or TfIdfParams()
    N = index.num_docs
    score = 0.0
    for term in query_terms:
        count = index.term_frequency(doc_id, term)
        if count == 0:
            continue
        score += tf_weight(count, params.tf_variant) * idf_weight(
            N, index.document_frequency(term), params.idf_variant
        )
    return score


def retrieve_tfidf(
    index: InvertedIndex,
    query_terms: Sequence[str],
    top_k: int,
    params: TfIdfParams | None = None,
) -> list[tuple[int, float]]:
    """
    Top-k documents by TF-IDF score.

    Candidates are the documents containing at least one query term. As with
    BM25 retrieval, only strictly positive scores are returned: a term present
    in every document has STANDARD idf 0 and cannot by itself surface a match.

    Raises:
        EmptyInput: the query is empty or the index holds no documents.
        InvalidK: top_k is negative.
    """
    if len(query_terms) == 0:
        raise EmptyInput("query")
    if index.num_docs == 0:
        raise EmptyInput("index")
    top_k = check_top_k(top_k)
    params = params or TfIdfParams()

    N = index.num_docs
    accumulated: dict[int, float] = {}
    for term in query_terms:
        postings = index.postings(term)
        if not postings:
            continue
        term_idf = idf_weight(N, len(postings), params.idf_variant)
        if term_idf == 0.0:
            continue
        for doc_id, count in postings.items():
            accumulated[doc_id] = accumulated.get(doc_id, 0.0) + tf_weight(count, params.tf_variant) * term_idf

    logger.debug("TF-IDF query matched %d candidates", len(accumulated))
    if not accumulated:
        return []
    doc_ids = np.fromiter(accumulated.keys(), dtype=np.int64, count=len(accumulated))
    scores = np.fromiter(accumulated.values(), dtype=np.float64, count=len(accumulated))
    keep = np.isfinite(scores) & (scores > 0.0)
    return select_top_k(doc_ids[keep], scores[keep], top_k)


__all__ = [
    "TfVariant",
    "IdfVariant",
    "TfIdfParams",
    "tf_weight",
    "idf_weight",
    "score_tfidf",
    "retrieve_tfidf",
]

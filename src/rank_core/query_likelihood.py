"""
Query likelihood retrieval over an InvertedIndex.

Ranks documents by the log-probability that their smoothed unigram language
model generates the query:

    Score(D, Q) = Σ_{w in Q} log P(w | D)

Smoothing mixes the document model with the collection model
P(w | C) = cf(w) / |C|:

    JELINEK_MERCER  P(w | D) = (1 - λ) * tf(w, D) / |D| + λ * P(w | C)
    DIRICHLET       P(w | D) = (tf(w, D) + μ * P(w | C)) / (|D| + μ)

λ is the weight of the collection model (default 0.1); μ is the Dirichlet
prior (default 1000). Query terms absent from the collection have no
probability mass under either model and are skipped. Scores are
log-probabilities, so they are negative; higher is better.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from rank_core.bm25 import InvertedIndex
from rank_core.config import Config
from rank_core.errors import EmptyInput, InvalidParameter
from rank_core.ranking_utils import check_top_k, select_top_k

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


# =============================================================================
# Parameters
# =============================================================================


class Smoothing(str, Enum):
    JELINEK_MERCER = "jelinek_mercer"
    DIRICHLET = "dirichlet"


@dataclass(frozen=True)
class QueryLikelihoodParams:
    """
    Query likelihood settings.

    Attributes:
        smoothing: Smoothing method.
        lam: Jelinek-Mercer collection weight, in (0, 1].
        mu: Dirichlet prior, > 0.
    """

    smoothing: Smoothing = Smoothing.DIRICHLET
    lam: float = Config.ql_lambda
    mu: float = Config.ql_mu

    def __post_init__(self):
        object.__setattr__(self, "smoothing", Smoothing(self.smoothing))
        if not 0.0 < self.lam <= 1.0:
            raise InvalidParameter("lam", self.lam, "must lie in (0, 1]")
        if not (self.mu > 0 and math.isfinite(self.mu)):
            raise InvalidParameter("mu", self.mu, "must be a positive finite number")

    @classmethod
    def jelinek_mercer(cls, lam: float = Config.ql_lambda) -> QueryLikelihoodParams:
        return cls(smoothing=Smoothing.JELINEK_MERCER, lam=lam)

    @classmethod
    def dirichlet(cls, mu: float = Config.ql_mu) -> QueryLikelihoodParams:
        return cls(smoothing=Smoothing.DIRICHLET, mu=mu)


# =============================================================================
# Smoothed Term Probability
# =============================================================================


def smoothed_probability(
    tf: NDArray[np.float64],
    doc_lengths: NDArray[np.float64],
    p_collection: float,
    params: QueryLikelihoodParams,
) -> NDArray[np.float64]:
    """P(w | D) for one term across documents; p_collection must be > 0."""
    if params.smoothing is Smoothing.DIRICHLET:
        return (tf + params.mu * p_collection) / (doc_lengths + params.mu)
    with np.errstate(divide="ignore", invalid="ignore"):
        p_doc = np.where(doc_lengths > 0, tf / doc_lengths, 0.0)
    return (1.0 - params.lam) * p_doc + params.lam * p_collection


def score_query_likelihood(
    index: InvertedIndex,
    doc_id: int,
    query_terms: Sequence[str],
    params: QueryLikelihoodParams | None = None,
) -> float | None:
    """Query log-likelihood of one document, or None if the id is not indexed."""
    if doc_id not in index:
        return None
    params = params or QueryLikelihoodParams()
    total = index.total_terms
    doc_length = np.array([float(index.document_length(doc_id))])
    score = 0.0
    for term in query_terms:
        cf = index.collection_frequency(term)
        if cf == 0:
            continue
        tf = np.array([float(index.term_frequency(doc_id, term))])
        score += math.log(float(smoothed_probability(tf, doc_length, cf / total, params)[0]))
    return score


def retrieve_query_likelihood(
    index: InvertedIndex,
    query_terms: Sequence[str],
    top_k: int,
    params: QueryLikelihoodParams | None = None,
) -> list[tuple[int, float]]:
    """
    Top-k documents by query log-likelihood.

    Candidates are the documents containing at least one query term; when no
    query term occurs in the collection the result is empty. Repeated query
    terms count once per occurrence.

    Raises:
        EmptyInput: the query is empty or the index holds no documents.
        InvalidK: top_k is negative.
    """
    if len(query_terms) == 0:
        raise EmptyInput("query")
    if index.num_docs == 0:
        raise EmptyInput("index")
    top_k = check_top_k(top_k)
    params = params or QueryLikelihoodParams()

    known = [term for term in query_terms if index.document_frequency(term) > 0]
    candidates = sorted({doc_id for term in known for doc_id in index.postings(term)})
    logger.debug("Query likelihood matched %d candidates", len(candidates))
    if not candidates:
        return []

    doc_ids = np.array(candidates, dtype=np.int64)
    doc_lengths = np.array([index.document_length(d) for d in candidates], dtype=np.float64)
    total = index.total_terms
    scores = np.zeros(len(candidates), dtype=np.float64)
    for term in known:
        postings = index.postings(term)
        tf = np.array([postings.get(d, 0) for d in candidates], dtype=np.float64)
        p_collection = sum(postings.values()) / total
        scores += np.log(smoothed_probability(tf, doc_lengths, p_collection, params))

    keep = np.isfinite(scores)
    return select_top_k(doc_ids[keep], scores[keep], top_k)


__all__ = [
    "Smoothing",
    "QueryLikelihoodParams",
    "smoothed_probability",
    "score_query_likelihood",
    "retrieve_query_likelihood",
]

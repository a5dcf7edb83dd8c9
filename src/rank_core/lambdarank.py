"""
LambdaRank gradients for learning-to-rank.

For every pair (i, j) where document i is more relevant than document j:

    λ_ij = -σ / (1 + exp(σ (s_i - s_j))) * |ΔNDCG_ij|

ΔNDCG_ij is the change in NDCG@k obtained by swapping i and j in the ranking
induced by the current scores. Document i accumulates +λ_ij and document j
accumulates -λ_ij, so the gradients of one query always sum to zero.

Ranks come from one score-sorted pass; the discount of every rank is read from
a precomputed 1/log2(rank + 2) table with entries at rank >= k zeroed, so a
pair ranked entirely below the cutoff contributes nothing. The pair loop is
an (n, n) numpy expression rather than a Python double loop.

Applying the gradients (the model update) is left to the caller.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import expit

from rank_core.config import Config
from rank_core.errors import EmptyInput, InvalidK, InvalidParameter, LengthMismatch
from rank_core.metrics import check_relevance, discounts, gain_shift, gains

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LambdaRankParams:
    """
    LambdaRank settings.

    Attributes:
        sigma: Steepness of the pairwise logistic, > 0.
        exponential_gain: Gain 2^rel - 1 instead of rel.
        query_normalization: Divide by the query's pair count and rescale the
            total gradient mass by log2(1 + Σ|λ|) / Σ|λ|.
        cost_sensitivity: Weight each pair by 1 / ln(best rank + 2).
        score_normalization: Damp |ΔNDCG| for pairs with a large score gap
            relative to the query's score range.
    """

    sigma: float = Config.sigma
    exponential_gain: bool = True
    query_normalization: bool = False
    cost_sensitivity: bool = False
    score_normalization: bool = False

    def __post_init__(self):
        if not (self.sigma > 0 and math.isfinite(self.sigma)):
            raise InvalidParameter("sigma", self.sigma, "must be a positive finite number")


def _as_arrays(
    scores: Sequence[float] | NDArray[np.float64],
    relevance: Sequence[float] | NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    s = np.asarray(scores, dtype=np.float64).reshape(-1)
    rel = check_relevance(relevance)
    if s.size == 0:
        raise EmptyInput("scores")
    if rel.size == 0:
        raise EmptyInput("relevance")
    if s.size != rel.size:
        raise LengthMismatch(s.size, rel.size, "scores and relevance")
    return s, rel


def _resolve_cutoff(k: int | None, n: int) -> int:
    if k is None:
        return n
    if k <= 0:
        raise InvalidK(k, n)
    return min(int(k), n)


def _pair_mask(relevance: NDArray[np.float64]) -> NDArray[np.bool_]:
    """mask[i, j] is True when document i is strictly more relevant than j."""
    return relevance[:, np.newaxis] > relevance[np.newaxis, :]


def _lambdas(
    s: NDArray[np.float64],
    rel: NDArray[np.float64],
    params: LambdaRankParams,
    k: int,
) -> NDArray[np.float64]:
    n = s.size
    mask = _pair_mask(rel)
    num_pairs = int(mask.sum())
    if num_pairs == 0:
        return np.zeros(n, dtype=np.float64)

    # Current rank of each document under a stable descending sort
    order = np.argsort(-s, kind="stable")
    rank = np.empty(n, dtype=np.int64)
    rank[order] = np.arange(n)

    table = discounts(n)
    table[k:] = 0.0
    disc = table[rank]

    # Gains and IDCG share a 2^-shift factor so large grades cannot overflow
    shift = gain_shift(rel, params.exponential_gain)
    g = gains(rel, params.exponential_gain, shift)
    idcg = float(np.dot(gains(np.sort(rel)[::-1][:k], params.exponential_gain, shift), discounts(k)))
    inv_idcg = 1.0 / idcg if idcg > 0 else 0.0

    delta = np.abs(np.subtract.outer(g, g) * np.subtract.outer(disc, disc)) * inv_idcg
    score_diff = np.subtract.outer(s, s)

    if params.score_normalization:
        score_range = float(s.max() - s.min()) or 1.0
        delta = delta / (0.01 + np.abs(score_diff) / max(score_range, 0.01))

    if params.cost_sensitivity:
        best_rank = np.minimum.outer(rank, rank)
        delta = delta / np.log(best_rank + 2.0)

    # -σ / (1 + exp(σ Δs)) == -σ * expit(-σ Δs), without overflow
    lam = np.where(mask, -params.sigma * expit(-params.sigma * score_diff) * delta, 0.0)

    if params.query_normalization:
        lam = lam / num_pairs
        total = 2.0 * float(np.abs(lam).sum())
        if total > 0:
            lam = lam * (math.log2(1.0 + total) / total)

    logger.debug("LambdaRank over %d documents, %d ordered pairs, k=%d", n, num_pairs, k)
    return lam.sum(axis=1) - lam.sum(axis=0)


def compute_gradients(
    scores: Sequence[float] | NDArray[np.float64],
    relevance: Sequence[float] | NDArray[np.float64],
    params: LambdaRankParams | None = None,
    k: int | None = None,
) -> NDArray[np.float64]:
    """
    Per-document LambdaRank gradients for one query.

    Args:
        scores: Current model score of each document.
        relevance: Graded relevance of each document, aligned with scores.
        params: LambdaRank settings.
        k: NDCG cutoff (None for the whole list; values above the list length
            are clamped to it).

    Returns:
        One gradient per document, in input order.

    Raises:
        EmptyInput: scores or relevance is empty.
        LengthMismatch: scores and relevance differ in length.
        InvalidK: k <= 0.
        InvalidParameter: a relevance grade is negative or not finite.
    """
    s, rel = _as_arrays(scores, relevance)
    return _lambdas(s, rel, params or LambdaRankParams(), _resolve_cutoff(k, s.size))


def compute_gradients_batch(
    batch_scores: Sequence[Sequence[float]],
    batch_relevance: Sequence[Sequence[float]],
    params: LambdaRankParams | None = None,
    k: int | None = None,
) -> list[NDArray[np.float64]]:
    """
    Gradients for a batch of queries.

    Every query is validated before any gradient is computed. With
    query_normalization, each query's gradients are additionally scaled by its
    pair count relative to the batch's largest pair count.
    """
    if len(batch_scores) != len(batch_relevance):
        raise LengthMismatch(len(batch_scores), len(batch_relevance), "score and relevance batches")
    if len(batch_scores) == 0:
        raise EmptyInput("batch")
    params = params or LambdaRankParams()

    queries = [_as_arrays(s, rel) for s, rel in zip(batch_scores, batch_relevance)]
    cutoffs = [_resolve_cutoff(k, s.size) for s, _ in queries]

    results = [_lambdas(s, rel, params, cutoff) for (s, rel), cutoff in zip(queries, cutoffs)]
    if params.query_normalization:
        pairs = [int(_pair_mask(rel).sum()) for _, rel in queries]
        max_pairs = max(pairs)
        if max_pairs > 0:
            results = [lam * (p / max_pairs) for lam, p in zip(results, pairs)]
    return results


class LambdaRankTrainer:
    """Holds LambdaRank settings for repeated gradient computation."""

    def __init__(self, params: LambdaRankParams | None = None):
        self.params = params or LambdaRankParams()

    def compute_gradients(
        self,
        scores: Sequence[float] | NDArray[np.float64],
        relevance: Sequence[float] | NDArray[np.float64],
        k: int | None = None,
    ) -> NDArray[np.float64]:
        return compute_gradients(scores, relevance, self.params, k)

    def compute_gradients_batch(
        self,
        batch_scores: Sequence[Sequence[float]],
        batch_relevance: Sequence[Sequence[float]],
        k: int | None = None,
    ) -> list[NDArray[np.float64]]:
        return compute_gradients_batch(batch_scores, batch_relevance, self.params, k)


__all__ = [
    "LambdaRankParams",
    "LambdaRankTrainer",
    "compute_gradients",
    "compute_gradients_batch",
]

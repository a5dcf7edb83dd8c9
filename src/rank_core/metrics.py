from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from rank_core.errors import EmptyInput, InvalidK, InvalidParameter, LengthMismatch


# =============================================================================
# Graded Relevance (NDCG)
# =============================================================================


def check_relevance(relevance: Sequence[float] | np.ndarray) -> np.ndarray:
    """Flatten graded judgments; grades must be finite and non-negative."""
    rel = np.asarray(relevance, dtype=np.float64).reshape(-1)
    bad = ~np.isfinite(rel) | (rel < 0)
    if np.any(bad):
        raise InvalidParameter("relevance", float(rel[bad][0]), "grades must be finite and non-negative")
    return rel


def gain_shift(relevance: np.ndarray, exponential_gain: bool = True) -> float:
    """Exponent that keeps 2^rel representable: the largest grade (0 for linear gain)."""
    if not exponential_gain or len(relevance) == 0:
        return 0.0
    return max(float(np.max(relevance)), 0.0)


def gains(relevance: np.ndarray, exponential_gain: bool = True, shift: float = 0.0) -> np.ndarray:
    """
    Per-position gain 2^rel - 1 (exponential) or rel (linear), divided by 2^shift.

    NDCG and DCG differences are ratios of gains, so any common shift leaves them
    unchanged; passing gain_shift(relevance) keeps grades of 1024 and above finite.
    """
    relevance = np.asarray(relevance, dtype=np.float64)
    if exponential_gain:
        return np.exp2(relevance - shift) - np.exp2(-shift)
    return relevance * np.exp2(-shift)


def discounts(n: int) -> np.ndarray:
    """Position discount table 1 / log2(rank + 2) for ranks 0..n-1."""
    return 1.0 / np.log2(np.arange(n, dtype=np.float64) + 2.0)


def _resolve_k(k: int | None, length: int) -> int:
    if k is None:
        return length
    if k <= 0 or k > length:
        raise InvalidK(k, length)
    return int(k)


def dcg_at_k(
    relevance: Sequence[float] | np.ndarray,
    k: int | None = None,
    exponential_gain: bool = True,
) -> float:
    """
    Computes Discounted Cumulative Gain at rank K.

    Args:
        relevance: Graded relevance of each item, in ranked order.
        k: Top-k cutoff (None for the whole list).
        exponential_gain: Use 2^rel - 1 as the gain instead of rel.

    Returns:
        DCG at rank k (unscaled, so inf once 2^rel overflows).

    Raises:
        EmptyInput: relevance is empty.
        InvalidK: k <= 0 or k > len(relevance).
        InvalidParameter: a grade is negative or not finite.
    """
    rel = check_relevance(relevance)
    if rel.size == 0:
        raise EmptyInput("relevance")
    k = _resolve_k(k, rel.size)
    return float(np.dot(gains(rel[:k], exponential_gain), discounts(k)))


def ndcg_at_k(
    relevance: Sequence[float] | np.ndarray,
    k: int | None = None,
    exponential_gain: bool = True,
) -> float:
    """
    Computes Normalized Discounted Cumulative Gain (NDCG) at rank K.

    DCG@k = Σ_{i=1..k} (2^rel_i - 1) / log2(i + 1), normalized by the DCG of
    the same judgments sorted by decreasing relevance. A list without any
    positive judgment has IDCG 0 and scores 1.0: no ordering can be improved.

    Args:
        relevance: Graded relevance of each item, in ranked order.
        k: Top-k cutoff (None for the whole list).
        exponential_gain: Use 2^rel - 1 as the gain instead of rel.

    Returns:
        NDCG at rank k, in [0, 1].

    Raises:
        EmptyInput: relevance is empty.
        InvalidK: k <= 0 or k > len(relevance).
        InvalidParameter: a grade is negative or not finite.
    """
    rel = check_relevance(relevance)
    if rel.size == 0:
        raise EmptyInput("relevance")
    k = _resolve_k(k, rel.size)

    # DCG and IDCG share one scale factor, which cancels in the ratio
    shift = gain_shift(rel, exponential_gain)
    table = discounts(k)
    dcg = np.dot(gains(rel[:k], exponential_gain, shift), table)
    ideal = np.sort(rel)[::-1][:k]
    idcg = np.dot(gains(ideal, exponential_gain, shift), table)

    if idcg == 0.0:
        return 1.0
    return float(dcg / idcg)


# =============================================================================
# Binary Relevance (ranked id lists)
# =============================================================================


def precision_at_k(relevant: np.ndarray, retrieved: np.ndarray, k: int) -> float:
    """
    Computes Precision@K.

    Args:
        relevant: 1D array of relevant document ids.
        retrieved: 1D array of ranked document ids.
        k: Top-k cutoff.

    Returns:
        Precision at rank k.
    """
    if k < 0:
        raise InvalidK(k)
    if k == 0:
        return 0.0
    retrieved_k = np.asarray(retrieved)[:k]
    hits = np.isin(retrieved_k, relevant).sum()
    return float(hits / k)


def recall_at_k(relevant: np.ndarray, retrieved: np.ndarray, k: int) -> float:
    """
    Computes Recall@K.

    Args:
        relevant: 1D array of relevant document ids.
        retrieved: 1D array of ranked document ids.
        k: Top-k cutoff.

    Returns:
        Recall at rank k.
    """
    if k < 0:
        raise InvalidK(k)
    relevant = np.unique(np.asarray(relevant))
    if relevant.size == 0:
        return 0.0
    retrieved_k = np.asarray(retrieved)[:k]
    hits = np.isin(relevant, retrieved_k).sum()
    return float(hits / relevant.size)


def average_precision(relevant: np.ndarray, retrieved: np.ndarray) -> float:
    """
    Computes Average Precision (AP) for a single query.

    Args:
        relevant: 1D array of relevant document ids.
        retrieved: 1D array of ranked document ids.

    Returns:
        Average precision score.
    """
    relevant_set = set(np.asarray(relevant).tolist())
    if not relevant_set:
        return 0.0

    hits, sum_precisions = 0, 0.0
    seen = set()
    for i, doc_id in enumerate(np.asarray(retrieved).tolist(), start=1):
        if doc_id in relevant_set and doc_id not in seen:
            seen.add(doc_id)
            hits += 1
            sum_precisions += hits / i

    return sum_precisions / len(relevant_set)


def mean_average_precision(
    all_relevant: list[np.ndarray], all_retrieved: list[np.ndarray]
) -> float:
    """
    Computes Mean Average Precision (MAP) over multiple queries.

    Args:
        all_relevant: List of 1D arrays of relevant document ids.
        all_retrieved: List of 1D arrays of ranked document ids.

    Returns:
        Mean Average Precision score.
    """
    if len(all_relevant) != len(all_retrieved):
        raise LengthMismatch(len(all_relevant), len(all_retrieved), "relevant and retrieved lists")
    if not all_relevant:
        return 0.0

    ap_scores = [
        average_precision(rel, ret) for rel, ret in zip(all_relevant, all_retrieved)
    ]
    return float(np.mean(ap_scores))


def reciprocal_rank(relevant: np.ndarray, retrieved: np.ndarray) -> float:
    """
    Computes Reciprocal Rank (RR) for a single query.

    Returns:
        Reciprocal rank of the first relevant document (0.0 if none are retrieved).
    """
    relevant_set = set(np.asarray(relevant).tolist())
    for i, doc_id in enumerate(np.asarray(retrieved).tolist(), start=1):
        if doc_id in relevant_set:
            return 1.0 / i
    return 0.0


def mean_reciprocal_rank(
    all_relevant: list[np.ndarray], all_retrieved: list[np.ndarray]
) -> float:
    """Computes Mean Reciprocal Rank (MRR) over multiple queries."""
    if not all_relevant:
        return 0.0

    rr_scores = [
        reciprocal_rank(rel, ret) for rel, ret in zip(all_relevant, all_retrieved)
    ]
    return float(np.mean(rr_scores))


__all__ = [
    "check_relevance",
    "gain_shift",
    "gains",
    "discounts",
    "dcg_at_k",
    "ndcg_at_k",
    "precision_at_k",
    "recall_at_k",
    "average_precision",
    "mean_average_precision",
    "reciprocal_rank",
    "mean_reciprocal_rank",
]

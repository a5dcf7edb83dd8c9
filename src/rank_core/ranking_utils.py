"""
Shared utilities for ranked retrieval.

This module provides reusable components used by every retriever:
1. Deterministic top-k - np.partition + lexsort, ties broken by ascending id
2. Argument validation - legal top_k and document ids
3. Parallel batch ranking - ThreadPoolExecutor for query parallelism

Usage:
    from rank_core.ranking_utils import (
        select_top_k,
        batch_rank_parallel,
    )
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

import numpy as np

from rank_core.config import MIN_QUERIES_FOR_PARALLEL, NUM_QUERY_WORKERS
from rank_core.errors import InvalidK, InvalidParameter

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

Q = TypeVar("Q")
R = TypeVar("R")


# =============================================================================
# Argument Validation
# =============================================================================


def check_top_k(top_k: int) -> int:
    """Reject negative cutoffs. A cutoff of zero is legal and yields no results."""
    if top_k < 0:
        raise InvalidK(top_k)
    return int(top_k)


def check_doc_id(doc_id: int) -> int:
    """Accept Python or numpy integers only; floats are never truncated into ids."""
    if isinstance(doc_id, bool):
        raise InvalidParameter("doc_id", doc_id, "must be a non-negative integer")
    try:
        value = operator.index(doc_id)
    except TypeError:
        raise InvalidParameter("doc_id", doc_id, "must be a non-negative integer") from None
    if value < 0:
        raise InvalidParameter("doc_id", doc_id, "must be a non-negative integer")
    return value


# =============================================================================
# Efficient Top-K Selection
# =============================================================================


def select_top_k(
    doc_ids: NDArray[np.int64],
    scores: NDArray[np.float64],
    top_k: int | None,
) -> list[tuple[int, float]]:
    """
    Select the top-k (doc_id, score) pairs.

    Ordering is score descending, then doc_id ascending, so the output does
    not depend on insertion order or on how scores were computed.

    Uses np.partition for O(n) boundary selection when k << n. Every document
    tied with the boundary score is kept as a candidate so the id tie-break
    is applied before truncation.

    Args:
        doc_ids: Document identifiers (N,)
        scores: Score for each document (N,)
        top_k: Number of top results (None for all)

    Returns:
        List of (doc_id, score) pairs in ranked order
    """
    n = len(scores)
    if n == 0 or top_k == 0:
        return []

    if top_k is not None and top_k < n:
        boundary = np.partition(-scores, top_k - 1)[top_k - 1]
        candidates = np.flatnonzero(-scores <= boundary)
    else:
        candidates = np.arange(n)

    # lexsort uses the last key as primary
    order = candidates[np.lexsort((doc_ids[candidates], -scores[candidates]))]
    if top_k is not None:
        order = order[:top_k]
    return [(int(doc_ids[i]), float(scores[i])) for i in order]


# =============================================================================
# Parallel Batch Ranking
# =============================================================================


def batch_rank_parallel(
    queries: Sequence[Q],
    rank_single: Callable[[Q], R],
    num_workers: int = NUM_QUERY_WORKERS,
    min_queries_for_parallel: int = MIN_QUERIES_FOR_PARALLEL,
) -> list[R]:
    """
    Run rank_single over every query, in parallel for large batches.

    rank_single must only read shared state; callers are responsible for not
    mutating the underlying index while a batch is running.

    Args:
        queries: Queries in the caller's order
        rank_single: Function ranking one query
        num_workers: Number of parallel workers
        min_queries_for_parallel: Minimum queries before enabling parallelism

    Returns:
        One result per query, in query order
    """
    if len(queries) == 0:
        return []

    # For small batches, run sequentially
    if len(queries) < min_queries_for_parallel:
        return [rank_single(query) for query in queries]

    logger.debug("Ranking %d queries on %d workers", len(queries), num_workers)

    # For larger batches, parallelize
    with ThreadPoolExecutor(max_workers=num_workers) as executor:
        results = list(executor.map(rank_single, queries))

    return results


__all__ = [
    "check_top_k",
    "check_doc_id",
    "select_top_k",
    "batch_rank_parallel",
]

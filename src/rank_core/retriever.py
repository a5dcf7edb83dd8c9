"""
Common retrieval interface and batch querying.

The three retrieval strategies are a closed set sharing one capability:

    InvertedIndex    term-list queries, BM25 scoring
    DenseRetriever   embedding queries, cosine similarity
    SparseRetriever  SparseVector queries, dot product

Each exposes ``retrieve(query, top_k)``, ``score(doc_id, query)`` and
``num_docs``; this module types that capability and fans a batch of queries
out over a thread pool.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from rank_core.bm25 import Bm25Params, InvertedIndex
from rank_core.config import MIN_QUERIES_FOR_PARALLEL, NUM_QUERY_WORKERS
from rank_core.dense import DenseRetriever
from rank_core.errors import EmptyInput, InvalidParameter
from rank_core.ranking_utils import batch_rank_parallel, check_top_k
from rank_core.sparse import SparseRetriever

logger = logging.getLogger(__name__)


# =============================================================================
# Protocol for Retrievers (duck typing)
# =============================================================================


class Retriever(Protocol):
    """Protocol defining the capability shared by every retrieval strategy."""

    @property
    def num_docs(self) -> int: ...

    def retrieve(self, query: Any, top_k: int) -> list[tuple[int, float]]: ...

    def score(self, doc_id: int, query: Any) -> float | None: ...


AnyRetriever = InvertedIndex | DenseRetriever | SparseRetriever


# =============================================================================
# Batch Retrieval
# =============================================================================


def batch_retrieve(
    retriever: AnyRetriever,
    queries: Sequence[Any],
    top_k: int,
    params: Bm25Params | None = None,
    num_workers: int = NUM_QUERY_WORKERS,
    min_queries_for_parallel: int = MIN_QUERIES_FOR_PARALLEL,
) -> list[list[tuple[int, float]]]:
    """
    Retrieve top-k results for every query, in query order.

    Small batches run sequentially; larger ones are spread over a thread pool.
    The retriever must not be written to while the batch runs. The first
    failing query fails the whole batch.

    Args:
        retriever: Any of the three retrieval strategies.
        queries: Queries of the kind the retriever accepts.
        top_k: Results per query.
        params: BM25 parameters; only valid with an InvertedIndex.
        num_workers: Number of parallel workers
        min_queries_for_parallel: Minimum queries before enabling parallelism

    Returns:
        One ranked result list per query.
    """
    top_k = check_top_k(top_k)
    if retriever.num_docs == 0:
        raise EmptyInput("index")

    if isinstance(retriever, InvertedIndex):
        bm25_params = params or Bm25Params()

        def rank_single(query):
            return retriever.retrieve(query, top_k, bm25_params)

    elif params is not None:
        raise InvalidParameter("params", params, f"BM25 parameters do not apply to {type(retriever).__name__}")
    else:

        def rank_single(query):
            return retriever.retrieve(query, top_k)

    logger.debug("Batch of %d queries against %s", len(queries), type(retriever).__name__)
    return batch_rank_parallel(
        queries,
        rank_single,
        num_workers=num_workers,
        min_queries_for_parallel=min_queries_for_parallel,
    )


__all__ = ["Retriever", "AnyRetriever", "batch_retrieve"]

"""
Runtime configuration for the ranking core.

Parallelism settings can be overridden through environment variables:
    RANK_CORE_QUERY_WORKERS=16             # thread pool size for batch retrieval (max 64)
    RANK_CORE_MIN_QUERIES_FOR_PARALLEL=10  # smaller batches run sequentially
"""

from __future__ import annotations

import os

# Number of workers for parallel query processing
NUM_QUERY_WORKERS = min(int(os.environ.get("RANK_CORE_QUERY_WORKERS", 32)), 64)

# Minimum queries before enabling parallelism
MIN_QUERIES_FOR_PARALLEL = int(os.environ.get("RANK_CORE_MIN_QUERIES_FOR_PARALLEL", 10))


class Config:
    """Default scoring parameters."""

    # BM25
    k1: float = 1.2  # TF saturation
    b: float = 0.75  # Length normalization
    bm25l_delta: float = 0.5
    bm25plus_delta: float = 1.0

    # Query likelihood
    ql_lambda: float = 0.1  # Jelinek-Mercer collection weight
    ql_mu: float = 1000.0  # Dirichlet prior

    # LambdaRank
    sigma: float = 1.0  # Steepness of the pairwise logistic

    epsilon: float = 1e-9


__all__ = ["Config", "NUM_QUERY_WORKERS", "MIN_QUERIES_FOR_PARALLEL"]

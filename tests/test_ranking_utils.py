import importlib
import threading

import numpy as np
import pytest

from rank_core import config
from rank_core.errors import InvalidK, InvalidParameter
from rank_core.ranking_utils import (
    batch_rank_parallel,
    check_doc_id,
    check_top_k,
    select_top_k,
)


class TestSelectTopK:
    def test_orders_by_score_then_id(self):
        doc_ids = np.array([10, 11, 12, 13, 14])
        scores = np.array([1.0, 3.0, 3.0, 3.0, 2.0])
        assert select_top_k(doc_ids, scores, 2) == [(11, 3.0), (12, 3.0)]
        assert select_top_k(doc_ids, scores, None) == [
            (11, 3.0),
            (12, 3.0),
            (13, 3.0),
            (14, 2.0),
            (10, 1.0),
        ]

    def test_ties_independent_of_input_order(self):
        doc_ids = np.array([9, 2, 5, 1])
        scores = np.array([0.5, 0.5, 0.5, 0.1])
        assert [d for d, _ in select_top_k(doc_ids, scores, 2)] == [2, 5]

    def test_empty_and_zero(self):
        assert select_top_k(np.array([], dtype=np.int64), np.array([]), 5) == []
        assert select_top_k(np.array([1]), np.array([1.0]), 0) == []

    def test_top_k_larger_than_input(self):
        assert select_top_k(np.array([3, 1]), np.array([0.2, 0.9]), 10) == [(1, 0.9), (3, 0.2)]


class TestValidation:
    def test_check_top_k(self):
        assert check_top_k(0) == 0
        assert check_top_k(5) == 5
        with pytest.raises(InvalidK):
            check_top_k(-1)

    def test_check_doc_id(self):
        assert check_doc_id(0) == 0
        assert check_doc_id(np.int64(3)) == 3
        with pytest.raises(InvalidParameter):
            check_doc_id(-5)

    @pytest.mark.parametrize("doc_id", [1.7, 2.0, True, "4", None])
    def test_check_doc_id_rejects_non_integers(self, doc_id):
        with pytest.raises(InvalidParameter):
            check_doc_id(doc_id)


class TestBatchRankParallel:
    def test_preserves_query_order(self):
        queries = list(range(50))
        results = batch_rank_parallel(queries, lambda q: q * q, num_workers=8, min_queries_for_parallel=1)
        assert results == [q * q for q in queries]

    def test_small_batch_runs_on_caller_thread(self):
        caller = threading.get_ident()
        results = batch_rank_parallel([1, 2], lambda q: threading.get_ident(), min_queries_for_parallel=10)
        assert results == [caller, caller]

    def test_empty(self):
        assert batch_rank_parallel([], lambda q: q) == []

    def test_errors_propagate(self):
        def rank_single(q):
            if q == 3:
                raise InvalidK(-1)
            return q

        with pytest.raises(InvalidK):
            batch_rank_parallel(list(range(20)), rank_single, num_workers=4, min_queries_for_parallel=1)


def test_worker_count_from_environment(monkeypatch):
    monkeypatch.setenv("RANK_CORE_QUERY_WORKERS", "500")
    monkeypatch.setenv("RANK_CORE_MIN_QUERIES_FOR_PARALLEL", "3")
    try:
        reloaded = importlib.reload(config)
        assert reloaded.NUM_QUERY_WORKERS == 64
        assert reloaded.MIN_QUERIES_FOR_PARALLEL == 3
    finally:
        monkeypatch.undo()
        importlib.reload(config)
    assert config.NUM_QUERY_WORKERS <= 64

import numpy as np
import pytest

from rank_core.bm25 import Bm25Params, InvertedIndex
from rank_core.dense import DenseRetriever
from rank_core.errors import EmptyInput, InvalidK, InvalidParameter
from rank_core.retriever import batch_retrieve
from rank_core.sparse import SparseRetriever, SparseVector


@pytest.fixture
def lexical():
    index = InvertedIndex()
    index.add_document(0, "the quick brown fox".split())
    index.add_document(1, "the lazy dog".split())
    index.add_document(2, "quick quick dog".split())
    return index


@pytest.fixture
def dense():
    rng = np.random.default_rng(7)
    retriever = DenseRetriever()
    for doc_id in range(20):
        retriever.add_document(doc_id, rng.normal(size=8))
    return retriever


@pytest.fixture
def sparse():
    retriever = SparseRetriever()
    retriever.add_document(0, SparseVector([0, 1], [1.0, 0.5]))
    retriever.add_document(1, SparseVector([1, 2], [2.0, 1.0]))
    retriever.add_document(2, SparseVector([3], [1.0]))
    return retriever


class TestBatchRetrieve:
    def test_lexical_matches_single_queries(self, lexical):
        queries = [["quick"], ["dog"], ["the", "fox"], ["missing"]]
        results = batch_retrieve(lexical, queries, top_k=2)
        assert results == [lexical.retrieve(q, 2) for q in queries]

    def test_lexical_params_forwarded(self, lexical):
        params = Bm25Params.bm25plus()
        results = batch_retrieve(lexical, [["quick"]], top_k=3, params=params)
        assert results == [lexical.retrieve(["quick"], 3, params)]

    def test_sparse_matches_single_queries(self, sparse):
        queries = [SparseVector([1], [1.0]), SparseVector([0, 3], [1.0, 1.0])]
        results = batch_retrieve(sparse, queries, top_k=5)
        assert results == [sparse.retrieve(q, 5) for q in queries]

    @pytest.mark.parametrize("min_queries_for_parallel", [1, 1000])
    def test_dense_parallel_and_sequential_agree(self, dense, min_queries_for_parallel):
        rng = np.random.default_rng(11)
        queries = [rng.normal(size=8) for _ in range(25)]
        results = batch_retrieve(
            dense,
            queries,
            top_k=3,
            num_workers=4,
            min_queries_for_parallel=min_queries_for_parallel,
        )
        assert len(results) == 25
        assert results == [dense.retrieve(q, 3) for q in queries]

    def test_bm25_params_rejected_for_other_retrievers(self, sparse):
        with pytest.raises(InvalidParameter):
            batch_retrieve(sparse, [SparseVector([1], [1.0])], top_k=1, params=Bm25Params())

    def test_failing_query_fails_batch(self, lexical):
        with pytest.raises(EmptyInput):
            batch_retrieve(lexical, [["quick"], []], top_k=2)

    def test_empty_retriever(self):
        with pytest.raises(EmptyInput):
            batch_retrieve(DenseRetriever(), [[1.0]], top_k=1)

    def test_negative_top_k(self, lexical):
        with pytest.raises(InvalidK):
            batch_retrieve(lexical, [["quick"]], top_k=-1)

    def test_no_queries(self, lexical):
        assert batch_retrieve(lexical, [], top_k=3) == []


@pytest.mark.parametrize(
    "retriever_name, query",
    [
        ("lexical", ["quick"]),
        ("dense", [1.0] * 8),
        ("sparse", SparseVector([1], [1.0])),
    ],
)
def test_shared_capability(request, retriever_name, query):
    retriever = request.getfixturevalue(retriever_name)
    assert retriever.num_docs > 0
    results = retriever.retrieve(query, 2)
    assert len(results) <= 2
    doc_id, score = results[0]
    assert np.isclose(retriever.score(doc_id, query), score)
    assert retriever.score(10_000, query) is None

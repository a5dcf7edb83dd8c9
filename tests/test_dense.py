import numpy as np
import pytest

from rank_core.dense import DenseRetriever, cosine_similarity
from rank_core.errors import DimensionMismatch, EmptyInput, InvalidK


@pytest.fixture
def retriever():
    r = DenseRetriever()
    r.add_document(0, [1.0, 0.0, 0.0])
    r.add_document(1, [0.0, 1.0, 0.0])
    r.add_document(2, [-1.0, 0.0, 0.0])
    r.add_document(3, [0.7071, 0.7071, 0.0])
    return r


class TestCosineSimilarity:
    @pytest.mark.parametrize(
        "a, b, expected",
        [
            ([1.0, 2.0, 3.0], [1.0, 2.0, 3.0], 1.0),
            ([1.0, 2.0, 3.0], [2.0, 4.0, 6.0], 1.0),
            ([1.0, 0.0], [-1.0, 0.0], -1.0),
            ([1.0, 0.0], [0.0, 1.0], 0.0),
            ([0.0, 0.0], [1.0, 1.0], 0.0),
            ([3e-6, 4e-6], [3e-6, 4e-6], 1.0),
            ([1e-200, 2e-200], [-1e-200, -2e-200], -1.0),
            ([1e200, 0.0], [1e200, 1e200], 0.7071067811865476),
        ],
    )
    def test_values(self, a, b, expected):
        assert np.isclose(cosine_similarity(np.array(a), np.array(b)), expected)


class TestRetrieve:
    def test_identical_vector_ranks_first(self, retriever):
        results = retriever.retrieve([1.0, 0.0, 0.0], top_k=4)
        assert results[0][0] == 0
        assert np.isclose(results[0][1], 1.0)

    def test_opposite_and_orthogonal(self, retriever):
        scores = dict(retriever.retrieve([1.0, 0.0, 0.0], top_k=4))
        assert np.isclose(scores[2], -1.0)
        assert np.isclose(scores[1], 0.0)

    def test_scores_bounded_and_sorted(self, retriever):
        results = retriever.retrieve([0.3, -0.2, 0.9], top_k=10)
        scores = [score for _, score in results]
        assert len(results) == 4
        assert scores == sorted(scores, reverse=True)
        assert all(-1.0 <= score <= 1.0 for score in scores)

    def test_top_k_truncates(self, retriever):
        results = retriever.retrieve([1.0, 1.0, 0.0], top_k=2)
        assert [doc_id for doc_id, _ in results] == [3, 0]

    def test_top_k_zero(self, retriever):
        assert retriever.retrieve([1.0, 0.0, 0.0], top_k=0) == []

    def test_negative_top_k(self, retriever):
        with pytest.raises(InvalidK):
            retriever.retrieve([1.0, 0.0, 0.0], top_k=-3)

    def test_ties_broken_by_ascending_id(self):
        r = DenseRetriever()
        for doc_id in (9, 4, 6):
            r.add_document(doc_id, [1.0, 1.0])
        assert [doc_id for doc_id, _ in r.retrieve([1.0, 1.0], top_k=3)] == [4, 6, 9]

    @pytest.mark.parametrize("scale", [1e-6, 1e-150, 1e150])
    def test_tiny_and_huge_vectors_match_themselves(self, scale):
        r = DenseRetriever()
        r.add_document(0, [0.2 * scale, 0.9 * scale])
        r.add_document(1, [3.0 * scale, 4.0 * scale])
        r.add_document(2, [0.0, 0.0])
        results = r.retrieve([3.0 * scale, 4.0 * scale], top_k=3)
        assert results[0][0] == 1
        assert np.isclose(results[0][1], 1.0)
        assert np.isclose(r.score(1, [3.0 * scale, 4.0 * scale]), 1.0)
        assert dict(results)[2] == 0.0

    def test_zero_norm_scores_zero(self):
        r = DenseRetriever()
        r.add_document(0, [0.0, 0.0])
        r.add_document(1, [1.0, 0.0])
        scores = dict(r.retrieve([1.0, 0.0], top_k=2))
        assert scores[0] == 0.0
        assert np.isclose(scores[1], 1.0)
        assert all(score == 0.0 for _, score in r.retrieve([0.0, 0.0], top_k=2))

    def test_dimension_mismatch(self, retriever):
        with pytest.raises(DimensionMismatch):
            retriever.retrieve([1.0, 0.0], top_k=1)

    def test_empty_index(self):
        with pytest.raises(EmptyInput):
            DenseRetriever().retrieve([1.0, 0.0], top_k=1)

    def test_empty_query(self, retriever):
        with pytest.raises(EmptyInput):
            retriever.retrieve([], top_k=1)


class TestContainer:
    def test_dimension_fixed_on_first_insert(self):
        r = DenseRetriever()
        assert r.dimension is None
        r.add_document(0, [1.0, 2.0, 3.0])
        assert r.dimension == 3
        with pytest.raises(DimensionMismatch) as excinfo:
            r.add_document(1, [1.0, 2.0])
        assert excinfo.value.expected == 3
        assert excinfo.value.actual == 2
        assert r.num_docs == 1

    def test_score(self, retriever):
        assert np.isclose(retriever.score(1, [0.0, 2.0, 0.0]), 1.0)
        assert retriever.score(42, [1.0, 0.0, 0.0]) is None

    def test_reinsert_replaces_vector(self, retriever):
        retriever.add_document(2, [1.0, 0.0, 0.0])
        assert len(retriever) == 4
        assert np.isclose(retriever.score(2, [1.0, 0.0, 0.0]), 1.0)
        ids = [doc_id for doc_id, _ in retriever.retrieve([1.0, 0.0, 0.0], top_k=2)]
        assert ids == [0, 2]

    def test_get_document(self, retriever):
        assert np.array_equal(retriever.get_document(1), [0.0, 1.0, 0.0])
        assert retriever.get_document(7) is None
        assert 1 in retriever and 7 not in retriever

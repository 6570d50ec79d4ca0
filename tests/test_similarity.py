"""
Tests para rag/query/similarity.py — Similitud coseno y ranking.
"""

import sys
from pathlib import Path

import pytest

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from rag.query.similarity import cosine_similarity, rank_by_similarity


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_zero_magnitude_returns_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_dimension_mismatch_returns_zero(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0]) == 0.0

    def test_empty_vectors_return_zero(self):
        assert cosine_similarity([], []) == 0.0

    @pytest.mark.parametrize(
        "a, b",
        [
            ([1.0, 2.0, 3.0], [4.0, -5.0, 6.0]),
            ([0.3, 0.1], [-0.7, 2.2]),
            ([0.5, 0.5, 0.0, 1.5], [1.0, 0.0, 2.0, -1.0]),
        ],
    )
    def test_symmetric(self, a, b):
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_result_is_bounded(self):
        score = cosine_similarity([0.1] * 384, [0.1] * 384)
        assert -1.0 <= score <= 1.0


class TestRankBySimilarity:
    def _items(self):
        return [
            {"id": 1, "embedding": [0.0, 1.0]},
            {"id": 2, "embedding": [1.0, 0.0]},
            {"id": 3, "embedding": [1.0, 1.0]},
        ]

    def test_sorted_descending(self):
        ranked = rank_by_similarity([1.0, 0.0], self._items(), limit=3)
        assert [r["id"] for r in ranked] == [2, 3, 1]
        scores = [r["similarity"] for r in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_limit_truncates(self):
        ranked = rank_by_similarity([1.0, 0.0], self._items(), limit=1)
        assert [r["id"] for r in ranked] == [2]

    def test_zero_limit_returns_empty(self):
        assert rank_by_similarity([1.0, 0.0], self._items(), limit=0) == []

    def test_stale_dimension_excluded(self):
        items = self._items() + [{"id": 4, "embedding": [1.0, 0.0, 0.0]}]
        ranked = rank_by_similarity([1.0, 0.0], items, limit=10)
        assert 4 not in [r["id"] for r in ranked]

    def test_ties_keep_insertion_order(self):
        items = [{"id": i, "embedding": [1.0, 0.0]} for i in (5, 6, 7)]
        ranked = rank_by_similarity([1.0, 0.0], items, limit=3)
        assert [r["id"] for r in ranked] == [5, 6, 7]

    def test_does_not_mutate_input(self):
        items = self._items()
        rank_by_similarity([1.0, 0.0], items, limit=3)
        assert "similarity" not in items[0]

"""
Tests para rag/query/example_matcher.py — Ranking léxico de ejemplos.
"""

import sys
from pathlib import Path

import pytest

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from rag.query.example_matcher import NOISE_THRESHOLD, lexical_overlap, rank, tokenize


def _example(text, weight=1, output="A reply long enough"):
    return {"input": text, "expected_output": output, "weight": weight}


class TestTokenize:
    def test_lowercase_unique_tokens(self):
        assert tokenize("Ship ship SHIP tents") == {"ship", "tents"}

    def test_none_is_empty(self):
        assert tokenize(None) == set()


class TestLexicalOverlap:
    def test_normalized_by_longest(self):
        assert lexical_overlap({"a", "b"}, {"a", "b", "c", "d"}) == pytest.approx(0.5)

    def test_empty_sets(self):
        assert lexical_overlap(set(), set()) == 0.0


class TestRank:
    def test_best_match_first(self):
        examples = [
            _example("what are your opening hours"),
            _example("do you ship tents abroad"),
        ]
        ranked = rank(examples, "do you ship tents to canada")
        assert ranked[0]["input"] == "do you ship tents abroad"

    def test_weight_multiplies_score(self):
        examples = [
            _example("do you ship tents", weight=1),
            _example("do you sell boots", weight=5),
        ]
        ranked = rank(examples, "do you ship tents")
        # 1.0 * 1 vs 0.5 * 5
        assert ranked[0]["input"] == "do you sell boots"
        assert ranked[0]["similarity"] == pytest.approx(2.5)

    def test_noise_filtered(self):
        examples = [_example("completely unrelated sentence about weather today")]
        assert rank(examples, "do you ship tents") == []

    def test_all_results_above_threshold(self):
        examples = [_example(f"question number {i} about tents") for i in range(10)]
        ranked = rank(examples, "question about tents", limit=10)
        assert all(r["similarity"] > NOISE_THRESHOLD for r in ranked)

    def test_limit(self):
        examples = [_example("do you ship tents") for _ in range(5)]
        assert len(rank(examples, "do you ship tents", limit=3)) == 3

    def test_zero_limit_or_no_examples(self):
        assert rank([_example("hello there")], "hello there", limit=0) == []
        assert rank([], "hello there") == []

    def test_ties_keep_original_order(self):
        examples = [dict(_example("ship tents"), id=i) for i in range(3)]
        ranked = rank(examples, "ship tents")
        assert [r["id"] for r in ranked] == [0, 1, 2]

    def test_missing_weight_defaults_to_one(self):
        ranked = rank([{"input": "ship tents", "expected_output": "ok"}], "ship tents")
        assert ranked[0]["similarity"] == pytest.approx(1.0)

    def test_raising_weight_never_worsens_position(self):
        base = [
            dict(_example("do you ship tents abroad"), id=0),
            dict(_example("do you ship boots"), id=1),
            dict(_example("ship tents"), id=2),
            dict(_example("do you sell tents"), id=3),
        ]
        message = "do you ship tents to canada"

        positions = []
        for weight in range(1, 11):
            examples = [dict(e) for e in base]
            examples[2]["weight"] = weight
            ranked = rank(examples, message, limit=len(examples))
            positions.append([r["id"] for r in ranked].index(2))

        assert positions == sorted(positions, reverse=True)
        assert positions[0] == 3
        assert positions[-1] == 0

    def test_raising_weight_keeps_competitor_scores(self):
        examples = [dict(_example("do you ship boots"), id=1), dict(_example("ship tents"), id=2)]
        before = {r["id"]: r["similarity"] for r in rank(examples, "do you ship tents")}
        examples[1]["weight"] = 4
        after = {r["id"]: r["similarity"] for r in rank(examples, "do you ship tents")}

        assert after[1] == pytest.approx(before[1])
        assert after[2] > before[2]

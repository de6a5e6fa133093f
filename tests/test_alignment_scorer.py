# tests/test_alignment_scorer.py

from types import SimpleNamespace

import pytest

from exam_ai_core.alignment_scorer import EmbeddingAlignmentScorer, cosine_similarity
from exam_ai_core.api_throttler import ApiThrottler
from exam_core.errors import OracleUnavailableError

VECTORS = {
    "heat engines and the carnot cycle": [1.0, 0.0, 0.0],
    "entropy and the second law": [0.8, 0.6, 0.0],
    "laminar pipe flow": [0.0, 0.0, 1.0],
    "Q: efficiency of a carnot engine": [1.0, 0.0, 0.0],
    "Q: anti-aligned nonsense": [-1.0, 0.0, 0.0],
}


class FakeEmbeddings:
    def __init__(self, fail=False):
        self.fail = fail
        self.requests = []

    def create(self, model, input):
        self.requests.append(list(input))
        if self.fail:
            raise RuntimeError("embedding service down")
        return SimpleNamespace(data=[SimpleNamespace(embedding=VECTORS[t]) for t in input])


CURRICULUM = {
    "Thermodynamics": ["heat engines and the carnot cycle", "entropy and the second law"],
    "Fluid Mechanics": ["laminar pipe flow"],
}


def _scorer(embeddings, cache_path=None):
    return EmbeddingAlignmentScorer(
        CURRICULUM,
        client=SimpleNamespace(embeddings=embeddings),
        model="embed-test",
        throttler=ApiThrottler(min_interval=0.0, max_retries=2, sleep=lambda s: None),
        cache_path=cache_path,
    )


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1], [1, 2])


def test_score_is_max_over_passages():
    scorer = _scorer(FakeEmbeddings())
    assert scorer.score("Q: efficiency of a carnot engine", "Thermodynamics") == pytest.approx(1.0)
    assert scorer.score("Q: efficiency of a carnot engine", "Fluid Mechanics") == pytest.approx(0.0)


def test_score_clamped_to_unit_interval():
    scorer = _scorer(FakeEmbeddings())
    assert scorer.score("Q: anti-aligned nonsense", "Fluid Mechanics") == 0.0
    assert scorer.score("Q: anti-aligned nonsense", "Thermodynamics") == 0.0


def test_unknown_module_scores_zero():
    embeddings = FakeEmbeddings()
    assert _scorer(embeddings).score("anything", "Optics") == 0.0
    assert embeddings.requests == []


def test_sqlite_cache_avoids_second_call(tmp_path):
    cache = str(tmp_path / "cache" / "embeddings.db")
    first = FakeEmbeddings()
    s1 = _scorer(first, cache)
    score = s1.score("Q: efficiency of a carnot engine", "Thermodynamics")
    assert len(first.requests) == 1

    # fresh scorer, same cache file: identical score, no API traffic
    second = FakeEmbeddings()
    s2 = _scorer(second, cache)
    assert s2.score("Q: efficiency of a carnot engine", "Thermodynamics") == score
    assert second.requests == []


def test_memory_cache_only_embeds_new_texts():
    embeddings = FakeEmbeddings()
    scorer = _scorer(embeddings)
    scorer.score("Q: efficiency of a carnot engine", "Thermodynamics")
    scorer.score("Q: anti-aligned nonsense", "Thermodynamics")
    assert embeddings.requests[1] == ["Q: anti-aligned nonsense"]


def test_embedding_failure_is_unavailable():
    with pytest.raises(OracleUnavailableError) as exc:
        _scorer(FakeEmbeddings(fail=True)).score("Q: efficiency of a carnot engine", "Thermodynamics")
    assert exc.value.oracle == "openai-alignment"

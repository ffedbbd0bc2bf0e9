import math
from unittest.mock import MagicMock

import pytest

from classifier.cache import ClassifierCache
from classifier.policy import DecisionPolicy, Pricing
from classifier.provider import FallbackClassifier
from common.errors import ConfigurationError, TransientAPIError
from common.models import FallbackResult, TokenUsage
from conftest import FakeEmbeddingSource, MemoryMarker


def _at_similarity(score):
    """A 2-d unit vector whose cosine similarity to [1, 0] is ``score``."""
    return [score, math.sqrt(1 - score * score)]


@pytest.fixture
def seeded_storage(storage):
    code = storage.add_category("code", threshold=0.4, description="Programming questions")
    example_id = storage.add_example(code.id, "write a python function")
    storage.set_example_vector(example_id, [1.0, 0.0])
    storage.add_category("reasoning", description="Logic puzzles")
    return storage


@pytest.fixture
def cache(seeded_storage):
    return ClassifierCache(seeded_storage, MemoryMarker())


@pytest.fixture
def fallback():
    mock = MagicMock(spec=FallbackClassifier)
    mock.classify.return_value = FallbackResult(
        label="reasoning",
        confidence=0.8,
        usage=TokenUsage(input_tokens=100, output_tokens=20),
        model="gpt-4o-mini",
    )
    return mock


def _source():
    return FakeEmbeddingSource(
        vectors={
            "close": _at_similarity(0.55),
            "far": _at_similarity(0.30),
        },
        tokens=10,
    )


def test_confident_local_match(cache, fallback):
    policy = DecisionPolicy(cache, _source(), fallback)

    result = policy.classify("close")

    assert result.label == "code"
    assert result.source == "local"
    assert result.score == pytest.approx(0.55)
    fallback.classify.assert_not_called()
    assert result.consumption.input_tokens == 10
    assert result.consumption.output_tokens == 0
    assert result.consumption.embedding_cost == pytest.approx(10 / 1000 * 0.00013)
    assert result.consumption.fallback_cost == 0


def test_low_score_uses_fallback(cache, fallback):
    policy = DecisionPolicy(cache, _source(), fallback)

    result = policy.classify("far")

    assert result.label == "reasoning"
    assert result.source == "fallback"
    assert result.score == 0.8
    text, categories = fallback.classify.call_args.args
    assert text == "far"
    assert [c.name for c in categories] == ["code", "reasoning"]

    consumption = result.consumption
    assert consumption.input_tokens == 110
    assert consumption.output_tokens == 20
    assert consumption.total_tokens == 130
    assert consumption.fallback_cost == pytest.approx(100 / 1e6 * 0.15 + 20 / 1e6 * 0.60)
    assert consumption.total_cost == pytest.approx(
        consumption.embedding_cost + consumption.fallback_cost
    )


def test_score_equal_to_threshold_is_local(seeded_storage, fallback):
    cache = ClassifierCache(seeded_storage, MemoryMarker())
    source = FakeEmbeddingSource(vectors={"edge": [1.0, 0.0]})
    with seeded_storage._connect() as conn:
        conn.execute("UPDATE categories SET threshold = 1.0 WHERE name = 'code'")

    result = DecisionPolicy(cache, source, fallback).classify("edge")

    assert result.source == "local"
    assert result.label == "code"


def test_low_score_without_fallback(cache):
    policy = DecisionPolicy(cache, _source(), None)

    result = policy.classify("far")

    assert result.label == "code"
    assert result.source == "local"
    assert result.score == pytest.approx(0.30)
    assert result.consumption.input_tokens == 10


def test_use_fallback_false_skips_fallback(cache, fallback):
    result = DecisionPolicy(cache, _source(), fallback).classify("far", use_fallback=False)

    assert result.source == "local"
    fallback.classify.assert_not_called()


def test_fallback_disabled_skips_fallback(cache, fallback):
    policy = DecisionPolicy(cache, _source(), fallback, fallback_enabled=False)

    assert policy.classify("far").source == "local"
    fallback.classify.assert_not_called()


def test_empty_cache_without_fallback_is_unknown(storage):
    source = _source()
    policy = DecisionPolicy(ClassifierCache(storage, MemoryMarker()), source, None)

    result = policy.classify("anything")

    assert result.label == "unknown"
    assert result.source == "local"
    assert result.score == -1.0
    assert result.consumption is None
    assert source.calls == []


def test_empty_cache_delegates_to_fallback(storage, fallback):
    source = _source()
    policy = DecisionPolicy(ClassifierCache(storage, MemoryMarker()), source, fallback)

    result = policy.classify("anything")

    assert result.label == "reasoning"
    assert result.source == "fallback"
    assert source.calls == []
    assert result.consumption.input_tokens == 100
    assert result.consumption.embedding_cost == 0


def test_fallback_without_valid_label(cache, fallback):
    fallback.classify.return_value = FallbackResult(
        label=None, confidence=0.0, usage=TokenUsage(input_tokens=50, output_tokens=5)
    )

    result = DecisionPolicy(cache, _source(), fallback).classify("far")

    assert result.label == "code"
    assert result.source == "fallback"
    assert result.score == pytest.approx(0.30)
    assert result.consumption.input_tokens == 60
    assert result.consumption.output_tokens == 5


def test_fallback_failure_degrades(cache, fallback):
    fallback.classify.side_effect = TransientAPIError("down")

    result = DecisionPolicy(cache, _source(), fallback).classify("far")

    assert result.label == "code"
    assert result.source == "fallback"
    assert result.consumption.input_tokens == 10
    assert result.consumption.fallback_cost == 0


def test_embedding_failure_degrades_to_fallback(cache, fallback):
    source = FakeEmbeddingSource(failing={"broken"})

    result = DecisionPolicy(cache, source, fallback).classify("broken")

    assert result.label == "reasoning"
    assert result.source == "fallback"
    assert result.consumption.embedding_cost == 0


def test_embedding_failure_without_fallback_is_unknown(cache):
    source = FakeEmbeddingSource(failing={"broken"})

    result = DecisionPolicy(cache, source, None).classify("broken")

    assert result.label == "unknown"
    assert result.source == "local"
    assert result.consumption is None


def test_fallback_only_configuration(cache, fallback):
    result = DecisionPolicy(cache, None, fallback).classify("close")

    assert result.source == "fallback"
    assert result.label == "reasoning"


@pytest.mark.parametrize("text", ["", "   ", "\n"])
def test_blank_text_is_rejected(cache, fallback, text):
    with pytest.raises(ValueError):
        DecisionPolicy(cache, _source(), fallback).classify(text)


def test_no_usable_path_is_a_configuration_error(cache, fallback):
    with pytest.raises(ConfigurationError):
        DecisionPolicy(cache, None, None).classify("hello")
    with pytest.raises(ConfigurationError):
        DecisionPolicy(cache, None, fallback, fallback_enabled=False).classify("hello")


def test_classify_checks_freshness_every_call(cache, fallback, mocker):
    spy = mocker.spy(cache, "check_freshness")
    policy = DecisionPolicy(cache, _source(), fallback)

    policy.classify("close")
    policy.classify("close")

    assert spy.call_count == 2


def test_custom_pricing(cache):
    pricing = Pricing(embedding_per_1k=1.0)

    result = DecisionPolicy(cache, _source(), None, pricing=pricing).classify("close")

    assert result.consumption.embedding_cost == pytest.approx(0.01)


def test_result_to_dict(cache, fallback):
    data = DecisionPolicy(cache, _source(), fallback).classify("far").to_dict()

    assert data["prompt"] == "far"
    assert data["label"] == "reasoning"
    assert data["source"] == "fallback"
    assert data["consumption"]["tokens"] == {"input": 110, "output": 20, "total": 130}
    assert set(data["consumption"]["cost"]) == {"embeddings", "fallback", "total"}


def test_classify_many_preserves_order_and_drops_blanks(cache, fallback):
    policy = DecisionPolicy(cache, _source(), fallback, max_workers=3)

    results = policy.classify_many(["far", "  ", "close", "far"])

    assert [r.prompt for r in results] == ["far", "close", "far"]
    assert [r.source for r in results] == ["fallback", "local", "fallback"]


def test_classify_many_reports_item_errors(cache, fallback, mocker):
    policy = DecisionPolicy(cache, _source(), fallback)
    original = policy.classify

    def classify(text, use_fallback=True):
        if text == "boom":
            raise RuntimeError("exploded")
        return original(text, use_fallback)

    mocker.patch.object(policy, "classify", side_effect=classify)

    results = policy.classify_many(["close", "boom"])

    assert results[0].label == "code"
    assert results[1].source == "error"
    assert results[1].error == "exploded"
    assert results[1].to_dict()["error"] == "exploded"


def test_classify_many_requires_text(cache, fallback):
    with pytest.raises(ValueError):
        DecisionPolicy(cache, _source(), fallback).classify_many(["", "  "])

"""Tests for weighted trait selection and the uniqueness session."""

from __future__ import annotations

import random
from collections import Counter

import pytest

from traitgen.catalog import Layer, Trait
from traitgen.errors import EmptyLayerError, UniquenessExhaustedError
from traitgen.selection import (
    GenerationSession,
    dna_fingerprint,
    select_trait,
    selection_probabilities,
)


def make_layer(*weights: float, name: str = "layer") -> Layer:
    traits = tuple(
        Trait(name=f"t{i}", weight=weight, filename=f"t{i}.png") for i, weight in enumerate(weights)
    )
    return Layer(name=name, path=name, traits=traits)


@pytest.mark.parametrize("weights", [(70, 30), (1, 1, 1), (0.5, 2.5, 7), (0, 0, 0), (0, 5)])
def test_selection_probabilities_sum_to_one(weights: tuple) -> None:
    probabilities = selection_probabilities(make_layer(*weights))
    assert sum(probabilities.values()) == pytest.approx(1.0)


def test_selection_probabilities_are_proportional() -> None:
    probabilities = selection_probabilities(make_layer(70, 30))
    assert probabilities == pytest.approx({"t0": 0.7, "t1": 0.3})


def test_all_zero_weights_are_uniform() -> None:
    probabilities = selection_probabilities(make_layer(0, 0, 0, 0))
    assert set(probabilities.values()) == {0.25}


def test_select_trait_follows_weights() -> None:
    rng = random.Random(42)
    layer = make_layer(70, 30)
    counts = Counter(select_trait(layer, rng).name for _ in range(5000))
    assert 0.66 < counts["t0"] / 5000 < 0.74


def test_select_trait_zero_weights_degrade_to_uniform() -> None:
    """A layer with every weight at zero draws each trait about equally often."""
    rng = random.Random(3)
    layer = make_layer(0, 0, 0, 0)
    counts = Counter(select_trait(layer, rng).name for _ in range(4000))
    assert set(counts) == {"t0", "t1", "t2", "t3"}
    for count in counts.values():
        assert 0.2 < count / 4000 < 0.3


def test_select_trait_never_picks_zero_weight_when_others_are_set() -> None:
    rng = random.Random(0)
    layer = make_layer(0, 10, 0)
    assert {select_trait(layer, rng).name for _ in range(500)} == {"t1"}


def test_select_trait_empty_layer() -> None:
    with pytest.raises(EmptyLayerError):
        select_trait(Layer(name="empty", path="empty", traits=()), random.Random())


def test_select_trait_is_reproducible_with_seed() -> None:
    layer = make_layer(5, 3, 2)
    rng_a, rng_b = random.Random(99), random.Random(99)
    draws_a = [select_trait(layer, rng_a).name for _ in range(50)]
    draws_b = [select_trait(layer, rng_b).name for _ in range(50)]
    assert draws_a == draws_b


def test_dna_fingerprint_is_deterministic_hex() -> None:
    dna = dna_fingerprint([("background", "Blue"), ("eyes", "Gold")])
    assert dna == dna_fingerprint([("background", "Blue"), ("eyes", "Gold")])
    assert len(dna) == 64
    int(dna, 16)


def test_dna_fingerprint_depends_on_order_and_values() -> None:
    base = dna_fingerprint([("background", "Blue"), ("eyes", "Gold")])
    assert base != dna_fingerprint([("eyes", "Gold"), ("background", "Blue")])
    assert base != dna_fingerprint([("background", "Blue"), ("eyes", "Green")])
    assert base != dna_fingerprint([("background", "Blue")])


def test_session_rejects_repeats() -> None:
    session = GenerationSession(requested=2)
    assert session.accept("abc")
    assert not session.accept("abc")
    assert session.produced == 1
    assert session.accept("def")
    assert session.complete


def test_session_attempt_budget() -> None:
    session = GenerationSession(requested=3)
    assert session.max_attempts == 30

    for _ in range(30):
        session.start_attempt()
    session.accept("only-one")

    with pytest.raises(UniquenessExhaustedError) as excinfo:
        session.start_attempt()
    assert excinfo.value.produced == 1
    assert excinfo.value.requested == 3
    assert excinfo.value.attempts == 30


def test_seeded_sessions_share_draw_sequence() -> None:
    a = GenerationSession.seeded(1, seed=5)
    b = GenerationSession.seeded(1, seed=5)
    assert [a.rng.random() for _ in range(5)] == [b.rng.random() for _ in range(5)]

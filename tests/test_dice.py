import random

import pytest

from terminal.dice import evaluate_formula, parse_die, roll_dice


@pytest.mark.parametrize("die, count, sides", [("2d6", 2, 6), ("d20", 1, 20), ("10D4", 10, 4)])
def test_parse_die(die, count, sides):
    assert parse_die(die) == (count, sides)


def test_roll_stays_within_bounds_for_many_seeds():
    for seed in range(200):
        rng = random.Random(seed)
        assert 3 <= roll_dice("3d8", rng) <= 24
        assert 50 <= roll_dice("50d2", rng) <= 100


@pytest.mark.parametrize("bad", ["0d0", "", "xdy", "3d", "d0", "2d-4", None])
def test_malformed_dice_roll_zero(bad):
    assert roll_dice(bad, random.Random(1)) == 0


def test_formula_adds_flat_and_dice_terms():
    for seed in range(50):
        value = evaluate_formula("20+1d10", random.Random(seed))
        assert 21 <= value <= 30


def test_formula_malformed_terms_count_as_zero():
    assert evaluate_formula("15+abc", random.Random(1)) == 15
    assert evaluate_formula("", random.Random(1)) == 0
    assert evaluate_formula(None) == 0
    assert evaluate_formula(7) == 7


def test_formula_rerolls_between_calls():
    rng = random.Random(99)
    results = {evaluate_formula("1d1000", rng) for _ in range(20)}
    assert len(results) > 1

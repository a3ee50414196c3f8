"""Dice and attack formula evaluation.

Formulas look like ``20`` or ``20+1d10``: ``+``-separated terms, each either a
flat integer or ``NdS`` (N dice of S sides, N defaults to 1). Evaluation is
lenient: a malformed term contributes 0 and nothing here raises.
"""

import random
import re

_DIE = re.compile(r"(\d*)d(\d+)")
_FLAT = re.compile(r"-?\d+")


def parse_die(die_str):
    """Return (count, sides) for ``NdS``, or None if it is not a die term."""
    match = _DIE.fullmatch(str(die_str).strip().lower())
    if not match:
        return None
    count = int(match.group(1)) if match.group(1) else 1
    return count, int(match.group(2))


def roll_dice(die_str, rng=None):
    """Roll ``NdS`` and return the total. Malformed or zero-sided dice give 0."""
    parsed = parse_die(die_str)
    if not parsed:
        return 0
    count, sides = parsed
    if count <= 0 or sides <= 0:
        return 0
    rng = rng or random
    return sum(rng.randint(1, sides) for _ in range(count))


def evaluate_formula(formula, rng=None):
    """Evaluate an attack formula such as ``20+1d10``. Re-rolls on every call."""
    if isinstance(formula, int):
        return formula
    if not formula or not isinstance(formula, str):
        return 0

    total = 0
    for term in formula.split("+"):
        term = term.strip().lower()
        if _FLAT.fullmatch(term):
            total += int(term)
        elif "d" in term:
            total += roll_dice(term, rng)
    return total

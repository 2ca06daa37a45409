"""
Unit tests for tools/dice_roller.py — single-die rolls.

No mocks needed. Tests use a seeded random.Random for deterministic rolls.
"""

import random

import pytest

from models.story_log import DiceRollEntry
from tools.dice_roller import (
    STANDARD_DICE,
    format_roll,
    make_dice_roll_entry,
    parse_sides,
    roll_die,
)


class TestParseSides:
    """Test the die name parser."""

    def test_d_prefix(self):
        assert parse_sides("d20") == 20

    def test_explicit_single_die(self):
        assert parse_sides("1d6") == 6

    def test_bare_number(self):
        assert parse_sides("12") == 12

    def test_case_and_whitespace(self):
        assert parse_sides("  D100 ") == 100

    def test_multiple_dice_rejected(self):
        with pytest.raises(ValueError):
            parse_sides("2d6")

    def test_modifiers_rejected(self):
        with pytest.raises(ValueError):
            parse_sides("d20+5")

    def test_zero_sides_rejected(self):
        with pytest.raises(ValueError):
            parse_sides("d0")

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            parse_sides("fireball")


class TestRollDie:

    def test_results_stay_in_range(self):
        rng = random.Random(7)
        for sides in STANDARD_DICE:
            for _ in range(50):
                assert 1 <= roll_die(sides, rng) <= sides

    def test_seeded_rolls_repeat(self):
        first = [roll_die(20, random.Random(42)) for _ in range(3)]
        second = [roll_die(20, random.Random(42)) for _ in range(3)]
        assert first == second

    def test_one_sided_die(self):
        assert roll_die(1) == 1

    def test_zero_sides_rejected(self):
        with pytest.raises(ValueError):
            roll_die(0)


class TestDiceRollEntry:

    def test_entry_from_name(self):
        entry = make_dice_roll_entry("hero", "d20", random.Random(1))
        assert entry.type == "dice_roll"
        assert entry.character_id == "hero"
        assert entry.sides == 20
        assert 1 <= entry.result <= 20

    def test_entry_from_side_count(self):
        entry = make_dice_roll_entry("hero", 6, random.Random(1))
        assert entry.sides == 6

    def test_result_is_fixed_at_build_time(self):
        a = make_dice_roll_entry("hero", "d100", random.Random(3))
        b = make_dice_roll_entry("hero", "d100", random.Random(3))
        assert a == b

    def test_format_roll(self):
        entry = DiceRollEntry(character_id="hero", sides=20, result=17)
        assert format_roll(entry, "Aria") == "Aria rolled a 17 (d20)"

"""
Tests for tools/turn_order.py — current-player index arithmetic.
"""

from tools.turn_order import advance, clamp_index, index_after_removal


class TestAdvance:

    def test_wraps_to_first_player(self):
        assert advance(0, 3) == 1
        assert advance(2, 3) == 0

    def test_empty_roster_stays_at_zero(self):
        assert advance(0, 0) == 0
        assert clamp_index(7, 0) == 0

    def test_clamp_wraps(self):
        assert clamp_index(5, 3) == 2


class TestRemoval:

    def test_removing_earlier_player_shifts_index_down(self):
        # [A, B, C], current C (2), remove A -> [B, C], still C
        assert index_after_removal(2, 0, 2) == 1

    def test_removing_current_player_passes_turn_to_next(self):
        # [A, B, C], current B, remove B -> [A, C], C is up
        assert index_after_removal(1, 1, 2) == 1

    def test_removing_last_current_player_wraps(self):
        # [A, B, C], current C, remove C -> [A, B], A is up
        assert index_after_removal(2, 2, 2) == 0

    def test_removing_later_player_keeps_index(self):
        assert index_after_removal(0, 2, 2) == 0

    def test_unknown_player_only_clamps(self):
        assert index_after_removal(4, -1, 3) == 1

    def test_index_stays_in_range_for_every_case(self):
        for n in range(1, 7):
            for current in range(n):
                for removed in range(n):
                    result = index_after_removal(current, removed, n - 1)
                    assert 0 <= result < max(1, n - 1)
                    survivors = [p for p in range(n) if p != removed]
                    if removed != current:
                        # The same player keeps the turn.
                        assert survivors[result] == current

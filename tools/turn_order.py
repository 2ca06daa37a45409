"""
Turn order — index arithmetic for the roster.

The current player is tracked as an index into ``SessionState.players``.
These helpers keep ``0 <= index < max(1, len(players))`` true across turn
advances and roster removals. The same removal rule is used whether a
player left, was kicked, or dropped off the network.
"""


def clamp_index(index: int, player_count: int) -> int:
    """Wrap any index into the valid range for a roster of this size."""
    return index % max(1, player_count)


def advance(index: int, player_count: int) -> int:
    """The next player's index after an end-of-turn."""
    return (index + 1) % max(1, player_count)


def index_after_removal(current: int, removed: int, new_count: int) -> int:
    """Current index once the player at ``removed`` has left the roster.

    Players before the current one shift it down by one. Otherwise the
    index stays put (wrapping if it fell off the end), which passes the
    turn to whoever slid into the removed slot.
    """
    if removed < 0:
        return clamp_index(current, new_count)
    if removed < current:
        return current - 1
    return current % max(1, new_count)

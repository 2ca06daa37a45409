"""
Dice Roller — single-die rolls for ``dice_roll`` log entries.

A roll is always one die, uniform over ``1..sides``. The die can be named
the way players type it ('d20', 'D6') or as a bare number ('20').
"""

import logging
import random
import re
from typing import Optional

from models.story_log import DiceRollEntry

logger = logging.getLogger("DiceRoller")

STANDARD_DICE = (4, 6, 8, 10, 12, 20, 100)

# Pattern: optional 'd' prefix, faces
_DIE_RE = re.compile(
    r"^"
    r"(?:1?d)?"                 # optional 'd' / '1d' prefix
    r"(?P<faces>\d+)"           # faces (required)
    r"$",
    re.IGNORECASE,
)


def parse_sides(die: str) -> int:
    """Parse a die name into its number of sides.

    Supports:
        'd20'  → 20
        '1d6'  → 6
        '12'   → 12

    Raises ValueError for anything else, including zero-sided dice.
    """
    match = _DIE_RE.match(die.strip())
    if not match:
        raise ValueError(f"Could not parse die: {die!r}")
    sides = int(match.group("faces"))
    if sides < 1:
        raise ValueError(f"A die needs at least one side: {die!r}")
    return sides


def roll_die(sides: int, rng: Optional[random.Random] = None) -> int:
    if sides < 1:
        raise ValueError(f"A die needs at least one side, got {sides}")
    return (rng or random).randint(1, sides)


def make_dice_roll_entry(
    character_id: str,
    die,
    rng: Optional[random.Random] = None,
) -> DiceRollEntry:
    """Roll ``die`` (a side count or a name like 'd20') for a character.

    The result is fixed here, before the entry reaches the reducer, so every
    peer replays the same number.
    """
    sides = die if isinstance(die, int) else parse_sides(die)
    result = roll_die(sides, rng)
    logger.info(f"{character_id} rolled d{sides}: {result}")
    return DiceRollEntry(character_id=character_id, sides=sides, result=result)


def format_roll(entry: DiceRollEntry, name: str) -> str:
    """Human-readable roll line, e.g. 'Aria rolled a 17 (d20)'."""
    return f"{name} rolled a {entry.result} (d{entry.sides})"

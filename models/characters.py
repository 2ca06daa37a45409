"""
Character schemas — the cast that speaks, owns sprites and takes damage.

The narrator is a sentinel character that is always present. It never
belongs to a player and never takes part in defeat logic.
"""

import time
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator

from models.wire import WIRE_CONFIG, as_list


NARRATOR_ID = "narrator"

CharacterStatus = Literal["active", "defeated"]


def new_character_id() -> str:
    return f"char-{int(time.time() * 1000)}"


class CharacterStats(BaseModel):
    """Ability scores. Opaque to the session core."""

    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10

    model_config = WIRE_CONFIG


class Character(BaseModel):
    """Schema for a story character."""

    id: str
    name: str
    bio: str = ""
    sprite_asset_ids: List[str] = []
    max_health: int = Field(default=100, ge=1)
    health: int = 100
    status: CharacterStatus = "active"
    stats: CharacterStats = Field(default_factory=CharacterStats)

    model_config = WIRE_CONFIG

    @field_validator("sprite_asset_ids", mode="before")
    @classmethod
    def sprites_default_empty(cls, v):
        return as_list(v)

    @field_validator("health")
    @classmethod
    def health_within_bounds(cls, v, info):
        max_health = info.data.get("max_health")
        if max_health is not None and v > max_health:
            return max_health
        return max(0, v)

    @property
    def is_narrator(self) -> bool:
        return self.id == NARRATOR_ID


def narrator() -> Character:
    """The omniscient storyteller; its numbers are deliberately out of range."""
    return Character(
        id=NARRATOR_ID,
        name="Narrator",
        bio="The impartial storyteller who describes scenes and actions.",
        max_health=999,
        health=999,
        stats=CharacterStats(
            strength=999,
            dexterity=999,
            constitution=999,
            intelligence=999,
            wisdom=999,
            charisma=999,
        ),
    )

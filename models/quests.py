"""
Quest schema — tracks active and completed quests.
"""

import time
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from models.wire import WIRE_CONFIG, as_list


QuestStatus = Literal["active", "completed"]


def new_quest_id() -> str:
    return f"quest-{int(time.time() * 1000)}"


class QuestRewards(BaseModel):
    """What completing the quest is worth. Narrated, not auto-applied."""

    coins: int = Field(default=0, ge=0)
    items: List[str] = []

    model_config = WIRE_CONFIG

    @field_validator("items", mode="before")
    @classmethod
    def items_default_empty(cls, v):
        return as_list(v)


class Quest(BaseModel):
    """Schema for a Quest."""

    id: str
    title: str
    description: str = ""
    assigned_character_id: Optional[str] = None
    status: QuestStatus = "active"
    rewards: QuestRewards = Field(default_factory=QuestRewards)

    model_config = WIRE_CONFIG

    @field_validator("rewards", mode="before")
    @classmethod
    def rewards_default(cls, v):
        return v if v is not None else {}

"""
Story log schemas — the append-only history every scene is folded from.

``LogEntry`` is a closed union discriminated on ``type``. Adding a new kind
means adding a model here and teaching every consumer (reducer narration,
playback fold) about it; ``LOG_ENTRY_TYPES`` lists the kinds so tests can
check that nothing was missed.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from models.wire import WIRE_CONFIG, as_list


class ChoiceEffects(BaseModel):
    """Mechanical consequences of picking a choice."""

    coins: Optional[int] = None
    hp: Optional[int] = None
    target_character_id: Optional[str] = None

    model_config = WIRE_CONFIG


class Choice(BaseModel):
    text: str
    effects: Optional[ChoiceEffects] = None

    model_config = WIRE_CONFIG


class DialogueEntry(BaseModel):
    type: Literal["dialogue"] = "dialogue"
    character_id: str
    text: str

    model_config = WIRE_CONFIG


class ChoiceEntry(BaseModel):
    """Choices offered to the next player. Blocks playback."""

    type: Literal["choice"] = "choice"
    choices: List[Choice] = []

    model_config = WIRE_CONFIG

    @field_validator("choices", mode="before")
    @classmethod
    def choices_default_empty(cls, v):
        return as_list(v)


class ChoiceSelectionEntry(BaseModel):
    type: Literal["choice_selection"] = "choice_selection"
    player_id: str
    character_id: str
    choice: Choice

    model_config = WIRE_CONFIG


class BackgroundChangeEntry(BaseModel):
    type: Literal["background_change"] = "background_change"
    asset_id: Optional[str] = None

    model_config = WIRE_CONFIG


class SpriteChangeEntry(BaseModel):
    type: Literal["sprite_change"] = "sprite_change"
    character_id: str
    asset_id: Optional[str] = None

    model_config = WIRE_CONFIG


class CgShowEntry(BaseModel):
    type: Literal["cg_show"] = "cg_show"
    asset_id: Optional[str] = None

    model_config = WIRE_CONFIG


class DiceRollEntry(BaseModel):
    type: Literal["dice_roll"] = "dice_roll"
    character_id: str
    sides: int = Field(ge=1)
    result: int = Field(ge=1)

    model_config = WIRE_CONFIG


class QuestStatusEntry(BaseModel):
    type: Literal["quest_status"] = "quest_status"
    text: str

    model_config = WIRE_CONFIG


class StatChangeEntry(BaseModel):
    type: Literal["stat_change"] = "stat_change"
    text: str

    model_config = WIRE_CONFIG


LogEntry = Annotated[
    Union[
        DialogueEntry,
        ChoiceEntry,
        ChoiceSelectionEntry,
        BackgroundChangeEntry,
        SpriteChangeEntry,
        CgShowEntry,
        DiceRollEntry,
        QuestStatusEntry,
        StatChangeEntry,
    ],
    Field(discriminator="type"),
]

LOG_ENTRY_TYPES = (
    DialogueEntry,
    ChoiceEntry,
    ChoiceSelectionEntry,
    BackgroundChangeEntry,
    SpriteChangeEntry,
    CgShowEntry,
    DiceRollEntry,
    QuestStatusEntry,
    StatChangeEntry,
)

# Entries that change what is on screen without saying anything.
SCENE_ENTRY_TYPES = (BackgroundChangeEntry, SpriteChangeEntry, CgShowEntry)

log_entry_adapter = TypeAdapter(LogEntry)


def parse_log_entry(raw) -> LogEntry:
    """Validate a single wire-format log entry."""
    return log_entry_adapter.validate_python(raw)

"""
Pydantic v2 data models — the contract for all session state.

Everything the host broadcasts and every message a peer sends passes
through these models. Field names are snake_case in Python and camelCase
on the wire.
"""

from models.assets import Asset, AssetType, PendingAssetApproval
from models.characters import NARRATOR_ID, Character, CharacterStats, narrator
from models.quests import Quest, QuestRewards
from models.story_log import (
    BackgroundChangeEntry,
    CgShowEntry,
    Choice,
    ChoiceEffects,
    ChoiceEntry,
    ChoiceSelectionEntry,
    DialogueEntry,
    DiceRollEntry,
    LogEntry,
    QuestStatusEntry,
    SpriteChangeEntry,
    StatChangeEntry,
)
from models.session import (
    MAX_PLAYERS,
    ChatMessage,
    GamePhase,
    Player,
    SavedSession,
    SessionState,
    canonicalize_state,
    initial_state,
    system_message,
)
from models.actions import Action, parse_action
from models.messages import (
    DispatchActionMessage,
    EndTurnMessage,
    GameDeleted,
    GameStateSync,
    LobbyChatMessage,
    PlayerJoinRequest,
    parse_inbox_message,
)

__all__ = [
    "Asset",
    "AssetType",
    "PendingAssetApproval",
    "NARRATOR_ID",
    "Character",
    "CharacterStats",
    "narrator",
    "Quest",
    "QuestRewards",
    "BackgroundChangeEntry",
    "CgShowEntry",
    "Choice",
    "ChoiceEffects",
    "ChoiceEntry",
    "ChoiceSelectionEntry",
    "DialogueEntry",
    "DiceRollEntry",
    "LogEntry",
    "QuestStatusEntry",
    "SpriteChangeEntry",
    "StatChangeEntry",
    "MAX_PLAYERS",
    "ChatMessage",
    "GamePhase",
    "Player",
    "SavedSession",
    "SessionState",
    "canonicalize_state",
    "initial_state",
    "system_message",
    "Action",
    "parse_action",
    "DispatchActionMessage",
    "EndTurnMessage",
    "GameDeleted",
    "GameStateSync",
    "LobbyChatMessage",
    "PlayerJoinRequest",
    "parse_inbox_message",
]

"""
Session state schema — the single document that describes a play session.

``SessionState`` is what the host's reducer folds actions into and what it
broadcasts to every peer. ``canonicalize_state`` is the one place where a
snapshot coming off the wire is repaired: missing collections become empty
lists and the narrator is put back if it went missing.
"""

import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from models.assets import Asset, PendingAssetApproval
from models.characters import NARRATOR_ID, Character, narrator
from models.quests import Quest
from models.story_log import LogEntry
from models.wire import WIRE_CONFIG, as_list


MAX_PLAYERS = 5

SYSTEM_SENDER_ID = "system"
SYSTEM_SENDER_NAME = "System"

DEFAULT_GM_RULES = (
    "1. Be respectful to other players.\n"
    "2. No NSFW content.\n"
    "3. The Game Master's decisions are final.\n"
    "4. Have fun!"
)

GamePhase = Literal["setup", "play"]


class Player(BaseModel):
    """A seat at the table. Roster order is turn order."""

    id: str
    name: str
    last_seen_log_index: int = Field(default=0, ge=0)
    coins: int = Field(default=0, ge=0)
    is_waiting_for_approval: Optional[bool] = None

    model_config = WIRE_CONFIG


class ChatMessage(BaseModel):
    sender_id: str
    sender_name: str
    text: str
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    model_config = WIRE_CONFIG


def system_message(text: str) -> ChatMessage:
    """A chat line authored by the session itself (join rejections etc.)."""
    return ChatMessage(
        sender_id=SYSTEM_SENDER_ID,
        sender_name=SYSTEM_SENDER_NAME,
        text=text,
    )


class SessionState(BaseModel):
    """The authoritative session document."""

    title: str = "Untitled Story"
    gm_rules: str = DEFAULT_GM_RULES
    assets: List[Asset] = []
    characters: List[Character] = []
    story_log: List[LogEntry] = []
    quests: List[Quest] = []
    chat_log: List[ChatMessage] = []
    lobby_chat_log: List[ChatMessage] = []
    lobby_music_url: Optional[str] = None
    players: List[Player] = []
    pending_asset_approvals: List[PendingAssetApproval] = []

    model_config = WIRE_CONFIG

    @field_validator(
        "assets",
        "characters",
        "story_log",
        "quests",
        "chat_log",
        "lobby_chat_log",
        "players",
        "pending_asset_approvals",
        mode="before",
    )
    @classmethod
    def collections_default_empty(cls, v):
        return as_list(v)

    # Lookups used all over the reducer and the protocol layer.

    def find_asset(self, asset_id: Optional[str]) -> Optional[Asset]:
        if asset_id is None:
            return None
        return next((a for a in self.assets if a.id == asset_id), None)

    def find_character(self, character_id: Optional[str]) -> Optional[Character]:
        if character_id is None:
            return None
        return next((c for c in self.characters if c.id == character_id), None)

    def find_player(self, player_id: Optional[str]) -> Optional[Player]:
        if player_id is None:
            return None
        return next((p for p in self.players if p.id == player_id), None)

    def player_index(self, player_id: str) -> int:
        """Roster position of a player, or -1."""
        for i, player in enumerate(self.players):
            if player.id == player_id:
                return i
        return -1

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def canonicalize_state(raw: Any) -> SessionState:
    """Turn a wire snapshot (possibly with omitted fields) into a full state.

    Accepts a ``SessionState`` or a plain mapping. Every collection comes
    back as a list and the narrator is always the first character.
    """
    if isinstance(raw, SessionState):
        state = raw.model_copy()
    else:
        state = SessionState.model_validate(raw or {})
    if not any(c.id == NARRATOR_ID for c in state.characters):
        state = state.model_copy(update={"characters": [narrator()] + list(state.characters)})
    return state


def initial_state(title: Optional[str] = None) -> SessionState:
    """A brand-new session with only the narrator in the cast."""
    state = canonicalize_state({})
    if title:
        state = state.model_copy(update={"title": title})
    return state


class SavedSession(BaseModel):
    """A client-side bookmark used to rejoin a session later."""

    game_id: str
    title: str
    role: Literal["gm", "player"]
    my_player_id: Optional[str] = None
    my_player_name: Optional[str] = None
    last_accessed: int = Field(default_factory=lambda: int(time.time() * 1000))

    model_config = WIRE_CONFIG

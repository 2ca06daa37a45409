"""
Network envelopes exchanged between the host and its peers.

Peer-to-host messages are appended to the session's action inbox. Each one
carries a unique ``id`` so the host can drop a message that the transport
delivers twice. ``GAME_STATE_SYNC`` is not appended anywhere: it is the
value of the session's ``state`` path, rewritten whole on every change.
``GAME_DELETED`` never crosses the wire; a peer synthesizes it when the
snapshot it is watching vanishes.
"""

import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from models.session import ChatMessage, GamePhase, Player, SessionState
from models.wire import WIRE_CONFIG, as_list


def new_message_id() -> str:
    return uuid.uuid4().hex


class JoinRequestPayload(BaseModel):
    name: str
    id: str

    model_config = WIRE_CONFIG


class PlayerJoinRequest(BaseModel):
    type: Literal["PLAYER_JOIN_REQUEST"] = "PLAYER_JOIN_REQUEST"
    id: str = Field(default_factory=new_message_id)
    sender_id: Optional[str] = None
    payload: JoinRequestPayload

    model_config = WIRE_CONFIG


class DispatchActionPayload(BaseModel):
    # Kept raw so a malformed action does not sink the whole envelope.
    action: Dict[str, Any]

    model_config = WIRE_CONFIG


class DispatchActionMessage(BaseModel):
    type: Literal["DISPATCH_ACTION"] = "DISPATCH_ACTION"
    id: str = Field(default_factory=new_message_id)
    sender_id: Optional[str] = None
    payload: DispatchActionPayload

    model_config = WIRE_CONFIG


class EndTurnMessage(BaseModel):
    type: Literal["END_TURN"] = "END_TURN"
    id: str = Field(default_factory=new_message_id)
    sender_id: Optional[str] = None
    payload: Dict[str, Any] = {}

    model_config = WIRE_CONFIG

    @field_validator("payload", mode="before")
    @classmethod
    def payload_default(cls, v):
        return v if v is not None else {}


class LobbyChatPayload(BaseModel):
    message: ChatMessage

    model_config = WIRE_CONFIG


class LobbyChatMessage(BaseModel):
    type: Literal["LOBBY_CHAT_MESSAGE"] = "LOBBY_CHAT_MESSAGE"
    id: str = Field(default_factory=new_message_id)
    sender_id: Optional[str] = None
    payload: LobbyChatPayload

    model_config = WIRE_CONFIG


InboxMessage = Annotated[
    Union[PlayerJoinRequest, DispatchActionMessage, EndTurnMessage, LobbyChatMessage],
    Field(discriminator="type"),
]

INBOX_MESSAGE_TYPES = (PlayerJoinRequest, DispatchActionMessage, EndTurnMessage, LobbyChatMessage)

inbox_adapter = TypeAdapter(InboxMessage)


def parse_inbox_message(raw: Any) -> Optional[BaseModel]:
    """Validate a message read from the action inbox, or None."""
    try:
        return inbox_adapter.validate_python(raw)
    except ValidationError:
        return None


class GameStateSync(BaseModel):
    """The host's full broadcast.

    On the wire the session state travels without ``lobbyMusicUrl`` and
    ``players``; the music goes to its own path and the roster rides at the
    top level of this envelope.
    """

    type: Literal["GAME_STATE_SYNC"] = "GAME_STATE_SYNC"
    session_state: SessionState
    players: List[Player] = []
    current_player_index: int = 0
    phase: GamePhase = "setup"

    model_config = WIRE_CONFIG

    @field_validator("players", mode="before")
    @classmethod
    def players_default_empty(cls, v):
        return as_list(v)

    @field_validator("current_player_index", mode="before")
    @classmethod
    def index_default(cls, v):
        return v if v is not None else 0


class GameDeleted(BaseModel):
    type: Literal["GAME_DELETED"] = "GAME_DELETED"

    model_config = WIRE_CONFIG


def message_to_wire(message: BaseModel) -> Dict[str, Any]:
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)

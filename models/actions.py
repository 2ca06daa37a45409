"""
Reducer actions — every way the session state can change.

Actions travel over the wire as ``{"type": ..., "payload": ...}``, the same
shape the clients dispatch locally. ``Action`` is a closed union discriminated
on ``type``; ``parse_action`` turns raw wire data into one and returns None
for anything it does not recognise, so the host never chokes on a bad
message.

Ids for new assets, characters and quests are minted by the ``make_*``
builders here, never by the reducer, which keeps the reducer pure.
"""

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from models.assets import Asset, AssetType, PendingAssetApproval, new_asset_id, now_ms
from models.characters import Character, new_character_id
from models.quests import Quest, QuestRewards, QuestStatus, new_quest_id
from models.session import ChatMessage, Player
from models.story_log import LogEntry
from models.wire import WIRE_CONFIG, as_list

logger = logging.getLogger("Actions")


# ------------------------------------------------------------------
# Payloads
# ------------------------------------------------------------------

class IdPayload(BaseModel):
    id: str

    model_config = WIRE_CONFIG


class AssetPublishedPayload(BaseModel):
    id: str
    is_published: bool

    model_config = WIRE_CONFIG


class QuestStatusPayload(BaseModel):
    id: str
    status: QuestStatus

    model_config = WIRE_CONFIG


class BatchDataPayload(BaseModel):
    characters: List[Character] = []
    assets: List[Asset] = []

    model_config = WIRE_CONFIG

    @field_validator("characters", "assets", mode="before")
    @classmethod
    def default_empty(cls, v):
        return as_list(v)


class PlayerSeenPayload(BaseModel):
    player_id: str
    log_index: int = Field(ge=0)

    model_config = WIRE_CONFIG


class AssetSubmissionPayload(BaseModel):
    asset: Asset
    character_id_to_assign: str
    submitting_player_id: str

    model_config = WIRE_CONFIG


# ------------------------------------------------------------------
# Actions
# ------------------------------------------------------------------

class UpdateGmRules(BaseModel):
    type: Literal["UPDATE_GM_RULES"] = "UPDATE_GM_RULES"
    payload: str


class SetTitle(BaseModel):
    type: Literal["SET_TITLE"] = "SET_TITLE"
    payload: str


class AddAsset(BaseModel):
    type: Literal["ADD_ASSET"] = "ADD_ASSET"
    payload: Asset


class BatchAddAssets(BaseModel):
    type: Literal["BATCH_ADD_ASSETS"] = "BATCH_ADD_ASSETS"
    payload: List[Asset] = []

    @field_validator("payload", mode="before")
    @classmethod
    def default_empty(cls, v):
        return as_list(v)


class DeleteAsset(BaseModel):
    type: Literal["DELETE_ASSET"] = "DELETE_ASSET"
    payload: IdPayload


class SetAssetPublished(BaseModel):
    type: Literal["SET_ASSET_PUBLISHED"] = "SET_ASSET_PUBLISHED"
    payload: AssetPublishedPayload


class AddCharacter(BaseModel):
    type: Literal["ADD_CHARACTER"] = "ADD_CHARACTER"
    payload: Character


class UpdateCharacter(BaseModel):
    type: Literal["UPDATE_CHARACTER"] = "UPDATE_CHARACTER"
    payload: Character


class DeleteCharacter(BaseModel):
    type: Literal["DELETE_CHARACTER"] = "DELETE_CHARACTER"
    payload: IdPayload


class AddLogEntry(BaseModel):
    type: Literal["ADD_LOG_ENTRY"] = "ADD_LOG_ENTRY"
    payload: LogEntry


class ResetStoryLog(BaseModel):
    type: Literal["RESET_STORY_LOG"] = "RESET_STORY_LOG"
    payload: Optional[Dict[str, Any]] = None


class BatchAddData(BaseModel):
    type: Literal["BATCH_ADD_DATA"] = "BATCH_ADD_DATA"
    payload: BatchDataPayload


class AddQuest(BaseModel):
    type: Literal["ADD_QUEST"] = "ADD_QUEST"
    payload: Quest


class UpdateQuest(BaseModel):
    type: Literal["UPDATE_QUEST"] = "UPDATE_QUEST"
    payload: QuestStatusPayload


class AddChatMessage(BaseModel):
    type: Literal["ADD_CHAT_MESSAGE"] = "ADD_CHAT_MESSAGE"
    payload: ChatMessage


class AddLobbyChatMessage(BaseModel):
    type: Literal["ADD_LOBBY_CHAT_MESSAGE"] = "ADD_LOBBY_CHAT_MESSAGE"
    payload: ChatMessage


class SetLobbyMusic(BaseModel):
    type: Literal["SET_LOBBY_MUSIC"] = "SET_LOBBY_MUSIC"
    payload: Optional[str] = None


class AddPlayer(BaseModel):
    type: Literal["ADD_PLAYER"] = "ADD_PLAYER"
    payload: Player


class UpdatePlayer(BaseModel):
    type: Literal["UPDATE_PLAYER"] = "UPDATE_PLAYER"
    payload: Player


class RemovePlayer(BaseModel):
    type: Literal["REMOVE_PLAYER"] = "REMOVE_PLAYER"
    payload: IdPayload


class SetPlayers(BaseModel):
    type: Literal["SET_PLAYERS"] = "SET_PLAYERS"
    payload: List[Player] = []

    @field_validator("payload", mode="before")
    @classmethod
    def default_empty(cls, v):
        return as_list(v)


class MarkPlayerSeen(BaseModel):
    type: Literal["MARK_PLAYER_SEEN"] = "MARK_PLAYER_SEEN"
    payload: PlayerSeenPayload


class SubmitAssetForApproval(BaseModel):
    type: Literal["SUBMIT_ASSET_FOR_APPROVAL"] = "SUBMIT_ASSET_FOR_APPROVAL"
    payload: AssetSubmissionPayload


class ApproveAsset(BaseModel):
    type: Literal["APPROVE_ASSET"] = "APPROVE_ASSET"
    payload: PendingAssetApproval


class RejectAsset(BaseModel):
    type: Literal["REJECT_ASSET"] = "REJECT_ASSET"
    payload: PendingAssetApproval


class SetGameData(BaseModel):
    """Whole-state replace. The payload is canonicalized by the reducer."""

    type: Literal["SET_GAME_DATA"] = "SET_GAME_DATA"
    payload: Optional[Dict[str, Any]] = None


Action = Annotated[
    Union[
        UpdateGmRules,
        SetTitle,
        AddAsset,
        BatchAddAssets,
        DeleteAsset,
        SetAssetPublished,
        AddCharacter,
        UpdateCharacter,
        DeleteCharacter,
        AddLogEntry,
        ResetStoryLog,
        BatchAddData,
        AddQuest,
        UpdateQuest,
        AddChatMessage,
        AddLobbyChatMessage,
        SetLobbyMusic,
        AddPlayer,
        UpdatePlayer,
        RemovePlayer,
        SetPlayers,
        MarkPlayerSeen,
        SubmitAssetForApproval,
        ApproveAsset,
        RejectAsset,
        SetGameData,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES = (
    UpdateGmRules,
    SetTitle,
    AddAsset,
    BatchAddAssets,
    DeleteAsset,
    SetAssetPublished,
    AddCharacter,
    UpdateCharacter,
    DeleteCharacter,
    AddLogEntry,
    ResetStoryLog,
    BatchAddData,
    AddQuest,
    UpdateQuest,
    AddChatMessage,
    AddLobbyChatMessage,
    SetLobbyMusic,
    AddPlayer,
    UpdatePlayer,
    RemovePlayer,
    SetPlayers,
    MarkPlayerSeen,
    SubmitAssetForApproval,
    ApproveAsset,
    RejectAsset,
    SetGameData,
)

action_adapter = TypeAdapter(Action)


def parse_action(raw: Any) -> Optional[BaseModel]:
    """Validate a wire action. Unknown or malformed input gives None."""
    if isinstance(raw, ACTION_TYPES):
        return raw
    try:
        return action_adapter.validate_python(raw)
    except ValidationError as e:
        kind = raw.get("type") if isinstance(raw, dict) else type(raw).__name__
        logger.warning(f"Ignoring unrecognised action {kind!r}: {e.error_count()} validation error(s)")
        return None


def action_to_wire(action: BaseModel) -> Dict[str, Any]:
    return action.model_dump(mode="json", by_alias=True, exclude_none=True)


# ------------------------------------------------------------------
# Builders (the only place new ids are minted)
# ------------------------------------------------------------------

def make_add_asset(
    asset_type: AssetType,
    url: str,
    name: str,
    is_published: bool = False,
    owner_id: Optional[str] = None,
) -> AddAsset:
    return AddAsset(payload=Asset(
        id=new_asset_id(),
        type=asset_type,
        url=url,
        name=name,
        is_published=is_published,
        owner_id=owner_id,
    ))


def make_batch_add_assets(assets: List[Dict[str, Any]]) -> BatchAddAssets:
    """Build a batch add from ``{"type", "url", "name", ...}`` dicts.

    Every asset in the batch shares one timestamp and is told apart by index.
    """
    stamp = now_ms()
    return BatchAddAssets(payload=[
        Asset(id=new_asset_id(index=i, stamp=stamp), **asset)
        for i, asset in enumerate(assets)
    ])


def make_add_character(name: str, bio: str = "", sprite_asset_ids: Optional[List[str]] = None) -> AddCharacter:
    return AddCharacter(payload=Character(
        id=new_character_id(),
        name=name,
        bio=bio,
        sprite_asset_ids=list(sprite_asset_ids or []),
    ))


def make_add_quest(
    title: str,
    description: str = "",
    assigned_character_id: Optional[str] = None,
    coins: int = 0,
    items: Optional[List[str]] = None,
) -> AddQuest:
    return AddQuest(payload=Quest(
        id=new_quest_id(),
        title=title,
        description=description,
        assigned_character_id=assigned_character_id,
        rewards=QuestRewards(coins=coins, items=list(items or [])),
    ))


def make_asset_submission(
    player_id: str,
    character_id: str,
    url: str,
    name: str,
) -> SubmitAssetForApproval:
    """A player's sprite upload, held back until the host approves it."""
    return SubmitAssetForApproval(payload=AssetSubmissionPayload(
        asset=Asset(
            id=new_asset_id(),
            type="characterSprite",
            url=url,
            name=name,
            is_published=False,
            owner_id=player_id,
        ),
        character_id_to_assign=character_id,
        submitting_player_id=player_id,
    ))

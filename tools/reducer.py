"""
Reducer — folds one action into the session state.

``reduce(state, action)`` is pure and total: it never mutates its input,
never raises, and hands back the same state object for anything it does
not understand or refuses (unknown action, duplicate id, full roster).
Only the host runs it; peers replace their view wholesale from syncs.

Compound effects live here too. Picking a choice with effects appends,
in this exact order: the selection itself, the coin narration, the HP
narration, the defeat narration, then a sprite clear for the defeated
character. History rendering and playback rely on that order.
"""

import logging
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from models.actions import (
    ACTION_TYPES,
    AddAsset,
    AddCharacter,
    AddChatMessage,
    AddLobbyChatMessage,
    AddLogEntry,
    AddPlayer,
    AddQuest,
    ApproveAsset,
    BatchAddAssets,
    BatchAddData,
    DeleteAsset,
    DeleteCharacter,
    MarkPlayerSeen,
    RejectAsset,
    RemovePlayer,
    ResetStoryLog,
    SetAssetPublished,
    SetGameData,
    SetLobbyMusic,
    SetPlayers,
    SetTitle,
    SubmitAssetForApproval,
    UpdateCharacter,
    UpdateGmRules,
    UpdatePlayer,
    UpdateQuest,
    parse_action,
)
from models.assets import Asset, PendingAssetApproval
from models.characters import NARRATOR_ID
from models.session import MAX_PLAYERS, Player, SessionState, canonicalize_state
from models.story_log import (
    SCENE_ENTRY_TYPES,
    ChoiceSelectionEntry,
    QuestStatusEntry,
    SpriteChangeEntry,
    StatChangeEntry,
)

logger = logging.getLogger("Reducer")


def reduce(state: SessionState, action, max_players: int = MAX_PLAYERS) -> SessionState:
    """Apply ``action`` (a model or its wire dict) and return the new state."""
    if not isinstance(action, ACTION_TYPES):
        action = parse_action(action)
        if action is None:
            return state
    handler = _HANDLERS.get(type(action))
    if handler is None:
        logger.warning(f"No reducer case for {type(action).__name__}; state unchanged")
        return state
    try:
        if isinstance(action, (AddPlayer, SetPlayers)):
            return handler(state, action, max_players)
        return handler(state, action)
    except ValidationError as e:
        logger.error(f"{type(action).__name__} produced an invalid state: {e}")
        return state


def reduce_all(state: SessionState, actions, max_players: int = MAX_PLAYERS) -> SessionState:
    """Fold a sequence of actions, one at a time, in order."""
    for action in actions:
        state = reduce(state, action, max_players)
    return state


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _replace_item(items: List[BaseModel], index: int, item: BaseModel) -> List[BaseModel]:
    return items[:index] + [item] + items[index + 1:]


def _with_waiting_flags(players: List[Player], approvals: List[PendingAssetApproval]) -> List[Player]:
    """Recompute ``is_waiting_for_approval`` from the moderation queue."""
    waiting = {a.submitting_player_id for a in approvals}
    result = []
    for player in players:
        flag = True if player.id in waiting else None
        if player.is_waiting_for_approval != flag:
            player = player.model_copy(update={"is_waiting_for_approval": flag})
        result.append(player)
    return result


def _delete_asset(state: SessionState, asset_id: str) -> SessionState:
    if state.find_asset(asset_id) is None:
        return state
    characters = [
        c.model_copy(update={"sprite_asset_ids": [a for a in c.sprite_asset_ids if a != asset_id]})
        if asset_id in c.sprite_asset_ids else c
        for c in state.characters
    ]
    approvals = [a for a in state.pending_asset_approvals if a.asset_id != asset_id]
    return state.model_copy(update={
        "assets": [a for a in state.assets if a.id != asset_id],
        "characters": characters,
        "pending_asset_approvals": approvals,
        "players": _with_waiting_flags(state.players, approvals),
    })


def _coins_text(name: str, delta: int) -> str:
    if delta >= 0:
        return f"{name} gained {delta} coins."
    return f"{name} lost {-delta} coins."


def _hp_text(name: str, delta: int) -> str:
    if delta >= 0:
        return f"{name} recovered {delta} HP."
    return f"{name} lost {-delta} HP."


# ------------------------------------------------------------------
# Cases
# ------------------------------------------------------------------

def _update_gm_rules(state: SessionState, action: UpdateGmRules) -> SessionState:
    return state.model_copy(update={"gm_rules": action.payload})


def _set_title(state: SessionState, action: SetTitle) -> SessionState:
    return state.model_copy(update={"title": action.payload})


def _add_asset(state: SessionState, action: AddAsset) -> SessionState:
    asset = action.payload
    if state.find_asset(asset.id) is not None:
        logger.warning(f"Asset id {asset.id} already in use; ignoring ADD_ASSET")
        return state
    return state.model_copy(update={"assets": state.assets + [asset]})


def _batch_add_assets(state: SessionState, action: BatchAddAssets) -> SessionState:
    seen = {a.id for a in state.assets}
    added: List[Asset] = []
    for asset in action.payload:
        if asset.id in seen:
            continue
        seen.add(asset.id)
        added.append(asset)
    if not added:
        return state
    return state.model_copy(update={"assets": state.assets + added})


def _delete_asset_case(state: SessionState, action: DeleteAsset) -> SessionState:
    return _delete_asset(state, action.payload.id)


def _set_asset_published(state: SessionState, action: SetAssetPublished) -> SessionState:
    target = action.payload
    assets = [
        a.model_copy(update={"is_published": target.is_published}) if a.id == target.id else a
        for a in state.assets
    ]
    return state.model_copy(update={"assets": assets})


def _add_character(state: SessionState, action: AddCharacter) -> SessionState:
    character = action.payload
    if state.find_character(character.id) is not None:
        return state
    known = {a.id for a in state.assets}
    character = character.model_copy(update={
        "sprite_asset_ids": [a for a in character.sprite_asset_ids if a in known],
    })
    return state.model_copy(update={"characters": state.characters + [character]})


def _update_character(state: SessionState, action: UpdateCharacter) -> SessionState:
    updated = action.payload
    index = next((i for i, c in enumerate(state.characters) if c.id == updated.id), -1)
    if index < 0:
        return state
    current = state.characters[index]
    known = {a.id for a in state.assets}
    changes = {
        "sprite_asset_ids": [a for a in updated.sprite_asset_ids if a in known],
        "health": min(max(updated.health, 0), updated.max_health),
    }
    crossed = current.health > 0 and changes["health"] <= 0
    if crossed and not current.is_narrator:
        changes["status"] = "defeated"
    updated = updated.model_copy(update=changes)
    return state.model_copy(update={"characters": _replace_item(state.characters, index, updated)})


def _delete_character(state: SessionState, action: DeleteCharacter) -> SessionState:
    if action.payload.id == NARRATOR_ID:
        return state
    if state.find_character(action.payload.id) is None:
        return state
    return state.model_copy(update={
        "characters": [c for c in state.characters if c.id != action.payload.id],
    })


def _add_log_entry(state: SessionState, action: AddLogEntry) -> SessionState:
    entry = action.payload
    if isinstance(entry, SCENE_ENTRY_TYPES) and entry.asset_id is not None:
        if state.find_asset(entry.asset_id) is None:
            logger.warning(f"{entry.type} references unknown asset {entry.asset_id}; ignoring")
            return state
    if isinstance(entry, ChoiceSelectionEntry) and entry.choice.effects is not None:
        return _apply_choice_selection(state, entry)
    return state.model_copy(update={"story_log": state.story_log + [entry]})


def _apply_choice_selection(state: SessionState, entry: ChoiceSelectionEntry) -> SessionState:
    effects = entry.choice.effects
    log = state.story_log + [entry]
    players = state.players
    characters = state.characters

    if effects.coins:
        index = state.player_index(entry.player_id)
        if index >= 0:
            player = players[index]
            player = player.model_copy(update={"coins": max(0, player.coins + effects.coins)})
            players = _replace_item(players, index, player)
            log.append(StatChangeEntry(text=_coins_text(player.name, effects.coins)))

    target = state.find_character(effects.target_character_id)
    if effects.hp and target is not None and not target.is_narrator:
        index = next(i for i, c in enumerate(characters) if c.id == target.id)
        before = target.health
        after = min(max(before + effects.hp, 0), target.max_health)
        changes = {"health": after}
        log.append(StatChangeEntry(text=_hp_text(target.name, effects.hp)))
        if before > 0 and after <= 0:
            changes["status"] = "defeated"
            log.append(StatChangeEntry(text=f"{target.name} has been defeated!"))
            log.append(SpriteChangeEntry(character_id=target.id, asset_id=None))
        characters = _replace_item(characters, index, target.model_copy(update=changes))

    return state.model_copy(update={
        "story_log": log,
        "players": players,
        "characters": characters,
    })


def _reset_story_log(state: SessionState, action: ResetStoryLog) -> SessionState:
    players = [
        p.model_copy(update={"last_seen_log_index": 0}) if p.last_seen_log_index else p
        for p in state.players
    ]
    return state.model_copy(update={"story_log": [], "players": players})


def _batch_add_data(state: SessionState, action: BatchAddData) -> SessionState:
    merged = _batch_add_assets(state, BatchAddAssets(payload=action.payload.assets))
    characters = list(merged.characters)
    seen = {c.id for c in characters}
    for character in action.payload.characters:
        if character.id not in seen:
            seen.add(character.id)
            characters.append(character)
    return merged.model_copy(update={"characters": characters})


def _add_quest(state: SessionState, action: AddQuest) -> SessionState:
    quest = action.payload
    if any(q.id == quest.id for q in state.quests):
        return state
    quest = quest.model_copy(update={"status": "active"})
    return state.model_copy(update={"quests": state.quests + [quest]})


def _update_quest(state: SessionState, action: UpdateQuest) -> SessionState:
    target = action.payload
    index = next((i for i, q in enumerate(state.quests) if q.id == target.id), -1)
    if index < 0 or state.quests[index].status == target.status:
        return state
    quest = state.quests[index]
    log = list(state.story_log)
    if target.status == "completed":
        log.append(QuestStatusEntry(text=f"Quest Completed: {quest.title}"))
        if quest.rewards.coins > 0:
            log.append(StatChangeEntry(text=f"Reward: {quest.rewards.coins} coins."))
    quests = _replace_item(state.quests, index, quest.model_copy(update={"status": target.status}))
    return state.model_copy(update={"quests": quests, "story_log": log})


def _add_chat_message(state: SessionState, action: AddChatMessage) -> SessionState:
    return state.model_copy(update={"chat_log": state.chat_log + [action.payload]})


def _add_lobby_chat_message(state: SessionState, action: AddLobbyChatMessage) -> SessionState:
    return state.model_copy(update={"lobby_chat_log": state.lobby_chat_log + [action.payload]})


def _set_lobby_music(state: SessionState, action: SetLobbyMusic) -> SessionState:
    return state.model_copy(update={"lobby_music_url": action.payload or None})


def _add_player(state: SessionState, action: AddPlayer, max_players: int) -> SessionState:
    player = action.payload
    if len(state.players) >= max_players:
        logger.info(f"Roster full ({max_players}); not adding {player.name}")
        return state
    if state.find_player(player.id) is not None:
        return state
    player = player.model_copy(update={
        "last_seen_log_index": min(player.last_seen_log_index, len(state.story_log)),
    })
    return state.model_copy(update={"players": state.players + [player]})


def _update_player(state: SessionState, action: UpdatePlayer) -> SessionState:
    updated = action.payload
    index = state.player_index(updated.id)
    if index < 0:
        return state
    current = state.players[index]
    seen = max(current.last_seen_log_index, min(updated.last_seen_log_index, len(state.story_log)))
    updated = updated.model_copy(update={"last_seen_log_index": seen})
    return state.model_copy(update={"players": _replace_item(state.players, index, updated)})


def _remove_player(state: SessionState, action: RemovePlayer) -> SessionState:
    if state.find_player(action.payload.id) is None:
        return state
    return state.model_copy(update={
        "players": [p for p in state.players if p.id != action.payload.id],
    })


def _set_players(state: SessionState, action: SetPlayers, max_players: int) -> SessionState:
    players: List[Player] = []
    seen = set()
    log_length = len(state.story_log)
    for player in action.payload:
        if player.id in seen or len(players) >= max_players:
            continue
        seen.add(player.id)
        if player.last_seen_log_index > log_length:
            player = player.model_copy(update={"last_seen_log_index": log_length})
        players.append(player)
    return state.model_copy(update={"players": players})


def _mark_player_seen(state: SessionState, action: MarkPlayerSeen) -> SessionState:
    index = state.player_index(action.payload.player_id)
    if index < 0:
        return state
    player = state.players[index]
    seen = max(player.last_seen_log_index, min(action.payload.log_index, len(state.story_log)))
    if seen == player.last_seen_log_index:
        return state
    player = player.model_copy(update={"last_seen_log_index": seen})
    return state.model_copy(update={"players": _replace_item(state.players, index, player)})


def _submit_asset(state: SessionState, action: SubmitAssetForApproval) -> SessionState:
    submission = action.payload
    if state.find_asset(submission.asset.id) is not None:
        return state
    asset = submission.asset.model_copy(update={
        "is_published": False,
        "owner_id": submission.submitting_player_id,
    })
    approvals = state.pending_asset_approvals + [PendingAssetApproval(
        asset_id=asset.id,
        character_id_to_assign=submission.character_id_to_assign,
        submitting_player_id=submission.submitting_player_id,
    )]
    return state.model_copy(update={
        "assets": state.assets + [asset],
        "pending_asset_approvals": approvals,
        "players": _with_waiting_flags(state.players, approvals),
    })


def _find_approval(state: SessionState, asset_id: str) -> Optional[PendingAssetApproval]:
    return next((a for a in state.pending_asset_approvals if a.asset_id == asset_id), None)


def _approve_asset(state: SessionState, action: ApproveAsset) -> SessionState:
    approval = _find_approval(state, action.payload.asset_id)
    if approval is None:
        return state
    approvals = [a for a in state.pending_asset_approvals if a.asset_id != approval.asset_id]
    assets = [
        a.model_copy(update={"is_published": True}) if a.id == approval.asset_id else a
        for a in state.assets
    ]
    characters = [
        c.model_copy(update={"sprite_asset_ids": c.sprite_asset_ids + [approval.asset_id]})
        if c.id == approval.character_id_to_assign and approval.asset_id not in c.sprite_asset_ids
        else c
        for c in state.characters
    ]
    return state.model_copy(update={
        "assets": assets,
        "characters": characters,
        "pending_asset_approvals": approvals,
        "players": _with_waiting_flags(state.players, approvals),
    })


def _reject_asset(state: SessionState, action: RejectAsset) -> SessionState:
    approval = _find_approval(state, action.payload.asset_id)
    if approval is None:
        return state
    return _delete_asset(state, approval.asset_id)


def _set_game_data(state: SessionState, action: SetGameData) -> SessionState:
    return canonicalize_state(action.payload or {})


_HANDLERS: Dict[type, Callable] = {
    UpdateGmRules: _update_gm_rules,
    SetTitle: _set_title,
    AddAsset: _add_asset,
    BatchAddAssets: _batch_add_assets,
    DeleteAsset: _delete_asset_case,
    SetAssetPublished: _set_asset_published,
    AddCharacter: _add_character,
    UpdateCharacter: _update_character,
    DeleteCharacter: _delete_character,
    AddLogEntry: _add_log_entry,
    ResetStoryLog: _reset_story_log,
    BatchAddData: _batch_add_data,
    AddQuest: _add_quest,
    UpdateQuest: _update_quest,
    AddChatMessage: _add_chat_message,
    AddLobbyChatMessage: _add_lobby_chat_message,
    SetLobbyMusic: _set_lobby_music,
    AddPlayer: _add_player,
    UpdatePlayer: _update_player,
    RemovePlayer: _remove_player,
    SetPlayers: _set_players,
    MarkPlayerSeen: _mark_player_seen,
    SubmitAssetForApproval: _submit_asset,
    ApproveAsset: _approve_asset,
    RejectAsset: _reject_asset,
    SetGameData: _set_game_data,
}

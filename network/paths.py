"""
Transport path layout for one session.

    games/<sessionId>/state                 SessionState minus music and roster
    games/<sessionId>/music                 {lobbyMusicUrl}
    games/<sessionId>/actions/<key>         peer → host inbox (append-only)
    games/<sessionId>/presence/<playerId>   {name}, ephemeral
    games/<sessionId>/typing/<channel>/<id> {name}, ephemeral

The state path holds the ``GAME_STATE_SYNC`` envelope. Lobby music is often
a data URL several MB long, so it lives on its own path and is stitched
back in by the reader.
"""

from typing import Any, Dict, List, Literal, Optional, Tuple

from models.messages import GameStateSync
from models.session import canonicalize_state

ROOT = "games"

TypingChannel = Literal["lobby", "in-game"]
TYPING_CHANNELS = ("lobby", "in-game")


def split_path(path: str) -> List[str]:
    return [part for part in path.split("/") if part]


def prune(value: Any) -> Any:
    """Drop None and empty collections, recursively. Returns None if nothing is left.

    The database never stores empty values, so this is what a reader gets
    back after a write.
    """
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            item = prune(item)
            if item is not None:
                pruned[str(key)] = item
        return pruned or None
    if isinstance(value, (list, tuple)):
        items = [prune(item) for item in value]
        items = [item for item in items if item is not None]
        return items or None
    return value


def session_root(session_id: str) -> str:
    return f"{ROOT}/{session_id}"


def state_path(session_id: str) -> str:
    return f"{session_root(session_id)}/state"


def music_path(session_id: str) -> str:
    return f"{session_root(session_id)}/music"


def actions_path(session_id: str) -> str:
    return f"{session_root(session_id)}/actions"


def presence_root(session_id: str) -> str:
    return f"{session_root(session_id)}/presence"


def presence_path(session_id: str, player_id: str) -> str:
    return f"{presence_root(session_id)}/{player_id}"


def typing_root(session_id: str, channel: str) -> str:
    if channel not in TYPING_CHANNELS:
        raise ValueError(f"Unknown typing channel: {channel!r}")
    return f"{session_root(session_id)}/typing/{channel}"


def typing_path(session_id: str, channel: str, user_id: str) -> str:
    return f"{typing_root(session_id, channel)}/{user_id}"


def split_sync(sync: GameStateSync) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split a sync into the ``state`` and ``music`` payloads."""
    state = sync.session_state.to_wire()
    state.pop("lobbyMusicUrl", None)
    state.pop("players", None)
    envelope = sync.model_dump(mode="json", by_alias=True, exclude_none=True)
    envelope["sessionState"] = state
    music = {}
    if sync.session_state.lobby_music_url:
        music["lobbyMusicUrl"] = sync.session_state.lobby_music_url
    return envelope, music


def join_sync(envelope: Optional[Dict[str, Any]], music: Optional[Dict[str, Any]]) -> Optional[GameStateSync]:
    """Recombine the ``state`` and ``music`` payloads.

    Returns None when there is no state (the session is gone). The roster
    from the envelope is copied into ``session_state.players`` so the two
    views agree.
    """
    if not envelope:
        return None
    sync = GameStateSync.model_validate(envelope)
    state = canonicalize_state(sync.session_state)
    update = {"players": list(sync.players)}
    if music and music.get("lobbyMusicUrl"):
        update["lobby_music_url"] = music["lobbyMusicUrl"]
    return sync.model_copy(update={"session_state": state.model_copy(update=update)})

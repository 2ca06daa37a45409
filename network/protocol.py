"""
Session Protocol — the host/peer conversation over a channel transport.

One peer hosts. It owns the only copy of ``SessionState`` that matters,
runs every change through the reducer one at a time, and rewrites the
whole snapshot on the ``state`` path after each change. Everyone else is
a ``PeerSession``: it watches that snapshot and sends requests
(join, actions, end-turn, lobby chat) into the host's append-only inbox.

Roster changes always go through the same removal path, whether the
player left, was kicked, or their presence entry vanished. The turn
index is adjusted there and nowhere else.

Errors never cross the wire. Host-side failures are logged and passed to
the context's alert callback; peers only ever see the symptom (a stale
snapshot, a missing roster entry, a deleted session).
"""

import asyncio
import enum
import json
import logging
import random
import uuid
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from models.actions import (
    AddLobbyChatMessage,
    AddLogEntry,
    AddPlayer,
    IdPayload,
    MarkPlayerSeen,
    PlayerSeenPayload,
    RemovePlayer,
    action_to_wire,
    parse_action,
)
from models.characters import NARRATOR_ID
from models.messages import (
    DispatchActionMessage,
    DispatchActionPayload,
    EndTurnMessage,
    GameDeleted,
    GameStateSync,
    JoinRequestPayload,
    LobbyChatMessage,
    LobbyChatPayload,
    PlayerJoinRequest,
    message_to_wire,
    parse_inbox_message,
)
from models.session import (
    MAX_PLAYERS,
    ChatMessage,
    GamePhase,
    Player,
    SavedSession,
    SessionState,
    initial_state,
    system_message,
)
from models.story_log import StatChangeEntry
from network import paths
from network.errors import (
    ForgeError,
    JoinTimeoutError,
    PayloadTooLargeError,
    SessionNotFoundError,
    TransportError,
)
from network.presence import PresenceManager, TypingIndicators
from network.transport import Subscription, Transport
from tools.playback import PlaybackSession
from tools.reducer import reduce
from tools.session_store import SavedSessionStore
from tools.settings import Settings
from tools.turn_order import advance, clamp_index, index_after_removal

logger = logging.getLogger("Protocol")
host_logger = logging.getLogger("HostSession")
peer_logger = logging.getLogger("PeerSession")

DEFAULT_JOIN_TIMEOUT = 20.0
# Inbox messages are removed once handled, so only recent ids can come back.
PROCESSED_ID_MEMORY = 1000

AlertCallback = Callable[[str], None]
ChangeCallback = Callable[[Any], None]


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    KICKED = "kicked"


def new_session_id() -> str:
    return f"{random.randint(100000, 999999)}"


def new_player_id() -> str:
    return f"player-{uuid.uuid4().hex[:12]}"


def describe_transport_error(error: Exception) -> str:
    """User-facing text for a failed write."""
    if isinstance(error, PayloadTooLargeError):
        return ("The session state is too large to sync. "
                "Try removing some large images or the lobby music.")
    return "Could not reach the session server. Check your connection; changes will sync once it is back."


def joined_text(name: str) -> str:
    return f"({name}) Has Joined the Game!"


def left_text(name: str) -> str:
    return f"({name}) Has Left the Game!"


def kicked_text(name: str) -> str:
    return f"{name} was kicked by the GM."


def name_taken_text(name: str) -> str:
    return f"'{name}' tried to join, but the name is already in use. Join request rejected."


def session_full_text(name: str, max_players: int) -> str:
    return f"'{name}' tried to join, but the session is full ({max_players} players). Join request rejected."


# ------------------------------------------------------------------
# Connection context
# ------------------------------------------------------------------

class ConnectionContext:
    """Everything one open session needs: transport, id, live subscriptions.

    Closing a context drops its subscriptions; reopening means building a
    new one.
    """

    def __init__(self, transport: Transport, session_id: str,
                 on_alert: Optional[AlertCallback] = None):
        self.transport = transport
        self.session_id = session_id
        self.on_alert = on_alert
        self.subscriptions: List[Subscription] = []
        self.closed = False

    def track(self, subscription: Subscription) -> Subscription:
        self.subscriptions.append(subscription)
        return subscription

    def alert(self, message: str) -> None:
        logger.warning(f"[{self.session_id}] {message}")
        if self.on_alert:
            self.on_alert(message)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        subscriptions, self.subscriptions = self.subscriptions, []
        for subscription in subscriptions:
            await subscription.unsubscribe()


# ------------------------------------------------------------------
# Host
# ------------------------------------------------------------------

class HostSession:
    """The authoritative side of a session.

    Usage:
        host = await HostSession.create(transport, title="The Long Night")
        await host.dispatch(make_add_character("Aria"))
        await host.start_game()
        ...
        await host.close()
    """

    def __init__(
        self,
        context: ConnectionContext,
        state: Optional[SessionState] = None,
        current_player_index: int = 0,
        phase: GamePhase = "setup",
        host_player_id: Optional[str] = None,
        max_players: int = MAX_PLAYERS,
        max_state_bytes: Optional[int] = None,
        store: Optional[SavedSessionStore] = None,
        on_change: Optional[ChangeCallback] = None,
    ):
        self.context = context
        self.state = state or initial_state()
        self.current_player_index = clamp_index(current_player_index, len(self.state.players))
        self.phase: GamePhase = phase
        self.host_player_id = host_player_id
        self.max_players = max_players
        self.max_state_bytes = max_state_bytes
        self.store = store
        self.on_change = on_change
        self.presence = PresenceManager(context.transport, context.session_id)
        self._lock = asyncio.Lock()
        self.processed_id_memory = PROCESSED_ID_MEMORY
        self._processed_ids: "OrderedDict[str, None]" = OrderedDict()
        self._last_music: Optional[str] = None
        self._music_written = False

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def current_player(self) -> Optional[Player]:
        if not self.state.players:
            return None
        return self.state.players[clamp_index(self.current_player_index, len(self.state.players))]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def create(
        cls,
        transport: Transport,
        title: Optional[str] = None,
        host_player_name: Optional[str] = None,
        session_id: Optional[str] = None,
        on_alert: Optional[AlertCallback] = None,
        **kwargs,
    ) -> "HostSession":
        """Start a brand-new session, optionally with the host as a player."""
        if session_id is None:
            session_id = await cls._free_session_id(transport)
        host = cls(ConnectionContext(transport, session_id, on_alert), initial_state(title), **kwargs)
        if host_player_name and host_player_name.strip():
            host.host_player_id = new_player_id()
            host.state = reduce(
                host.state,
                AddPlayer(payload=Player(id=host.host_player_id, name=host_player_name.strip())),
                host.max_players,
            )
        host_logger.info(f"Created session {session_id} ({host.state.title})")
        await host.open()
        return host

    @staticmethod
    async def _free_session_id(transport: Transport, attempts: int = 5) -> str:
        session_id = new_session_id()
        for _ in range(attempts):
            try:
                if await transport.read(paths.state_path(session_id)) is None:
                    return session_id
            except TransportError as e:
                host_logger.warning(f"Could not check session id {session_id}: {e}")
                return session_id
            session_id = new_session_id()
        return session_id

    @classmethod
    async def resume(
        cls,
        transport: Transport,
        session_id: str,
        host_player_id: Optional[str] = None,
        on_alert: Optional[AlertCallback] = None,
        **kwargs,
    ) -> "HostSession":
        """Take authority back over an existing session after a reload.

        Reads the snapshot once and restores the turn index and phase from
        it. Raises ``SessionNotFoundError`` if nothing is stored there.
        """
        envelope = await transport.read(paths.state_path(session_id))
        music = await transport.read(paths.music_path(session_id))
        sync = paths.join_sync(envelope, music)
        if sync is None:
            raise SessionNotFoundError(f"Session {session_id} could not be found. It may have been deleted.")

        if host_player_id and sync.session_state.find_player(host_player_id) is None:
            host_player_id = None
        host = cls(
            ConnectionContext(transport, session_id, on_alert),
            sync.session_state,
            current_player_index=sync.current_player_index,
            phase=sync.phase,
            host_player_id=host_player_id,
            **kwargs,
        )
        host._last_music = sync.session_state.lobby_music_url
        host._music_written = True
        host_logger.info(
            f"Resumed session {session_id}: phase={host.phase}, "
            f"turn={host.current_player_index}, players={len(host.state.players)}"
        )
        await host.open()
        return host

    async def open(self) -> None:
        """Start listening to the inbox and presence, then publish the snapshot."""
        transport = self.context.transport
        self.context.track(await transport.subscribe_append(
            paths.actions_path(self.session_id), self._on_inbox,
        ))
        self.context.track(await self.presence.watch(self._on_presence_lost))
        player = self.state.find_player(self.host_player_id)
        if player is not None:
            try:
                await self.presence.register(player.id, player.name)
            except TransportError as e:
                host_logger.error(f"Could not register host presence: {e}")
        async with self._lock:
            await self._broadcast_locked()
        self._save_session()

    async def close(self) -> None:
        try:
            await self.presence.release()
        except TransportError as e:
            host_logger.warning(f"Presence cleanup failed: {e}")
        await self.context.close()

    async def delete_session(self) -> bool:
        """Remove the session for everyone. Peers see their snapshot vanish."""
        await self.close()
        try:
            await self.context.transport.remove(paths.session_root(self.session_id))
        except TransportError as e:
            host_logger.error(f"Failed to delete session {self.session_id}: {e}")
            self.context.alert(f"Failed to delete game: {e}")
            return False
        if self.store:
            self.store.remove(self.session_id)
        host_logger.info(f"Deleted session {self.session_id}")
        return True

    def _save_session(self) -> None:
        if not self.store:
            return
        player = self.state.find_player(self.host_player_id)
        self.store.upsert(SavedSession(
            game_id=self.session_id,
            title=self.state.title,
            role="gm",
            my_player_id=player.id if player else None,
            my_player_name=player.name if player else None,
        ))

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def _apply(self, action) -> bool:
        """Reduce one action and fix up the turn index. Caller holds the lock."""
        before = self.state
        after = reduce(before, action, self.max_players)
        if after is before:
            return False

        index = self.current_player_index
        count = len(before.players)
        removed = [i for i, p in enumerate(before.players) if after.find_player(p.id) is None]
        for k in reversed(removed):
            count -= 1
            index = index_after_removal(index, k, count)
        self.current_player_index = clamp_index(index, len(after.players))
        self.state = after

        if after.title != before.title and self.store:
            self.store.rename(self.session_id, after.title)
        if self.host_player_id and after.find_player(self.host_player_id) is None:
            self.host_player_id = None
        return True

    def _narrate(self, text: str) -> bool:
        return self._apply(AddLogEntry(payload=StatChangeEntry(text=text)))

    async def _commit(self, changed: bool) -> bool:
        if changed:
            await self._broadcast_locked()
            if self.on_change:
                self.on_change(self)
        return changed

    async def dispatch(self, action) -> bool:
        """Run an action through the reducer and broadcast if anything changed."""
        async with self._lock:
            return await self._commit(self._apply(action))

    async def start_game(self) -> bool:
        """Move from setup to play. Needs every player named and a cast."""
        async with self._lock:
            players = self.state.players
            if not players or any(not p.name.strip() for p in players):
                self.context.alert("Every player needs a name before the game can start.")
                return False
            if not any(c.id != NARRATOR_ID for c in self.state.characters):
                self.context.alert("Create at least one character before starting the game.")
                return False
            self.phase = "play"
            self.current_player_index = 0
            host_logger.info(f"Session {self.session_id} started with {len(players)} player(s)")
            return await self._commit(True)

    async def end_turn(self, sender_id: Optional[str] = None) -> bool:
        """Finish the current turn: mark the player caught up, then advance.

        With ``sender_id``, only the current player may end the turn.
        """
        async with self._lock:
            current = self.current_player
            if current is None:
                return False
            if sender_id is not None and sender_id != current.id:
                host_logger.info(f"Ignoring END_TURN from {sender_id}; it is {current.name}'s turn")
                return False
            self._apply(MarkPlayerSeen(payload=PlayerSeenPayload(
                player_id=current.id, log_index=len(self.state.story_log),
            )))
            self.current_player_index = advance(self.current_player_index, len(self.state.players))
            return await self._commit(True)

    async def remove_player(self, player_id: str, narration: Optional[str] = None) -> bool:
        """The one exit from the roster (leave, kick and disconnect all land here)."""
        async with self._lock:
            player = self.state.find_player(player_id)
            if player is None:
                return False
            if narration:
                self._narrate(narration)
            self._apply(RemovePlayer(payload=IdPayload(id=player_id)))
            host_logger.info(f"Removed {player.name} ({player_id}); turn index now {self.current_player_index}")
            return await self._commit(True)

    async def kick(self, player_id: str) -> bool:
        player = self.state.find_player(player_id)
        if player is None:
            return False
        return await self.remove_player(player_id, kicked_text(player.name))

    async def leave_as_player(self) -> bool:
        """Host stops playing and carries on as a spectator."""
        player = self.state.find_player(self.host_player_id)
        if player is None:
            return False
        try:
            await self.presence.unregister(player.id)
        except TransportError as e:
            host_logger.warning(f"Presence cleanup failed: {e}")
        changed = await self.remove_player(player.id, left_text(player.name))
        self._save_session()
        return changed

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def _on_inbox(self, key: str, raw: Any) -> None:
        message = parse_inbox_message(raw)
        try:
            if message is None:
                host_logger.warning(f"Dropping malformed inbox message {key}")
            elif message.id in self._processed_ids:
                host_logger.debug(f"Duplicate delivery of {message.type} {message.id}")
            else:
                self._remember(message.id)
                await self.handle_message(message)
        finally:
            await self._consume(key)

    def _remember(self, message_id: str) -> None:
        self._processed_ids[message_id] = None
        while len(self._processed_ids) > self.processed_id_memory:
            self._processed_ids.popitem(last=False)

    async def _consume(self, key: str) -> None:
        try:
            await self.context.transport.remove(f"{paths.actions_path(self.session_id)}/{key}")
        except TransportError as e:
            host_logger.warning(f"Could not clear inbox message {key}: {e}")

    async def handle_message(self, message: BaseModel) -> None:
        """Route one peer request."""
        if isinstance(message, PlayerJoinRequest):
            await self._handle_join(message.payload.name, message.payload.id)
        elif isinstance(message, DispatchActionMessage):
            action = parse_action(message.payload.action)
            if action is None:
                host_logger.warning(f"Ignoring malformed action from {message.sender_id}")
                return
            await self.dispatch(action)
        elif isinstance(message, EndTurnMessage):
            await self.end_turn(sender_id=message.sender_id)
        elif isinstance(message, LobbyChatMessage):
            await self.dispatch(AddLobbyChatMessage(payload=message.payload.message))

    async def _handle_join(self, name: str, player_id: str) -> None:
        async with self._lock:
            if self.state.find_player(player_id) is not None:
                host_logger.debug(f"Join request for {player_id} already on the roster")
                return
            name = name.strip()
            taken = any(p.name.lower() == name.lower() for p in self.state.players)
            if not name or taken:
                notice = name_taken_text(name)
            elif len(self.state.players) >= self.max_players:
                notice = session_full_text(name, self.max_players)
            else:
                notice = None

            if notice:
                host_logger.info(notice)
                self._apply(AddLobbyChatMessage(payload=system_message(notice)))
                await self._commit(True)
                return

            self._apply(AddPlayer(payload=Player(id=player_id, name=name)))
            if self.phase == "play":
                self._narrate(joined_text(name))
            host_logger.info(f"{name} ({player_id}) joined session {self.session_id}")
            await self._commit(True)

    async def _on_presence_lost(self, player_id: str) -> None:
        if player_id == self.host_player_id:
            return
        player = self.state.find_player(player_id)
        if player is None:
            return
        await self.remove_player(player_id, left_text(player.name))

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def snapshot(self) -> GameStateSync:
        return GameStateSync(
            session_state=self.state,
            players=list(self.state.players),
            current_player_index=self.current_player_index,
            phase=self.phase,
        )

    async def broadcast(self) -> bool:
        async with self._lock:
            return await self._broadcast_locked()

    async def _broadcast_locked(self) -> bool:
        """Write the whole snapshot. Failures are alerted, never raised."""
        if self.context.closed:
            return False
        envelope, music = paths.split_sync(self.snapshot())
        transport = self.context.transport
        try:
            if self.max_state_bytes is not None:
                size = len(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))
                if size > self.max_state_bytes:
                    raise PayloadTooLargeError(f"State is {size} bytes (limit {self.max_state_bytes})")
            await transport.write(paths.state_path(self.session_id), envelope)
            url = music.get("lobbyMusicUrl")
            if url != self._last_music or not self._music_written:
                await transport.write(paths.music_path(self.session_id), music or None)
                self._last_music = url
                self._music_written = True
            return True
        except TransportError as e:
            host_logger.error(f"Broadcast for session {self.session_id} failed: {e}")
            self.context.alert(describe_transport_error(e))
            return False


# ------------------------------------------------------------------
# Peer
# ------------------------------------------------------------------

class PeerSession:
    """A joining player's side of a session.

    Usage:
        peer = await PeerSession.join(transport, "123456", "Aria")
        await peer.wait_until_resolved()      # connected, or failed after the timeout
        await peer.dispatch(some_action)
        await peer.end_turn()
        await peer.leave()
    """

    def __init__(
        self,
        context: ConnectionContext,
        player_id: str,
        name: str,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
        store: Optional[SavedSessionStore] = None,
        on_change: Optional[ChangeCallback] = None,
    ):
        self.context = context
        self.player_id = player_id
        self.name = name
        self.join_timeout = join_timeout
        self.store = store
        self.on_change = on_change
        self.status = ConnectionStatus.DISCONNECTED
        self.sync: Optional[GameStateSync] = None
        self.admitted = False
        self.deleted = False
        self.last_event: Optional[BaseModel] = None
        self.error: Optional[ForgeError] = None
        self.presence = PresenceManager(context.transport, context.session_id)
        self.typing = TypingIndicators(context.transport, context.session_id, player_id, name)
        self._envelope: Optional[Dict[str, Any]] = None
        self._music: Optional[Dict[str, Any]] = None
        self._timeout_task: Optional[asyncio.Task] = None
        self._resolved = asyncio.Event()
        self._was_my_turn = False
        self._saved_title: Optional[str] = None

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def state(self) -> Optional[SessionState]:
        return self.sync.session_state if self.sync else None

    @property
    def me(self) -> Optional[Player]:
        return self.state.find_player(self.player_id) if self.state else None

    @property
    def is_my_turn(self) -> bool:
        if not self.sync or self.sync.phase != "play" or not self.sync.players:
            return False
        index = clamp_index(self.sync.current_player_index, len(self.sync.players))
        return self.sync.players[index].id == self.player_id

    # ------------------------------------------------------------------
    # Joining
    # ------------------------------------------------------------------

    @classmethod
    async def join(
        cls,
        transport: Transport,
        session_id: str,
        name: str,
        player_id: Optional[str] = None,
        on_alert: Optional[AlertCallback] = None,
        **kwargs,
    ) -> "PeerSession":
        peer = cls(ConnectionContext(transport, session_id, on_alert), player_id or new_player_id(),
                   name.strip(), **kwargs)
        await peer.start()
        return peer

    @classmethod
    async def rejoin(cls, transport: Transport, saved: SavedSession, **kwargs) -> "PeerSession":
        """Run the join flow again with the id and name from a saved session."""
        if saved.role != "player" or not saved.my_player_id or not saved.my_player_name:
            raise ValueError(f"Saved session {saved.game_id} is not a player seat")
        return await cls.join(transport, saved.game_id, saved.my_player_name,
                              player_id=saved.my_player_id, **kwargs)

    async def start(self) -> None:
        self.status = ConnectionStatus.CONNECTING
        self._timeout_task = asyncio.get_running_loop().create_task(self._join_deadline())
        transport = self.context.transport
        try:
            self.context.track(await transport.subscribe_value(
                paths.music_path(self.session_id), self._on_music,
            ))
            self.context.track(await transport.subscribe_value(
                paths.state_path(self.session_id), self._on_state,
            ))
            await self.presence.register(self.player_id, self.name)
            await self._send(PlayerJoinRequest(
                payload=JoinRequestPayload(name=self.name, id=self.player_id),
            ), raise_errors=True)
        except TransportError as e:
            peer_logger.error(f"Could not join session {self.session_id}: {e}")
            self.error = e
            self.context.alert(describe_transport_error(e))
            await self._terminate(ConnectionStatus.FAILED)
            return
        peer_logger.info(f"{self.name} ({self.player_id}) asked to join session {self.session_id}")

    async def wait_until_resolved(self) -> ConnectionStatus:
        """Wait until the join is accepted or has failed."""
        await self._resolved.wait()
        return self.status

    async def _join_deadline(self) -> None:
        await asyncio.sleep(self.join_timeout)
        if self.status is ConnectionStatus.CONNECTING:
            peer_logger.warning(f"No sync from session {self.session_id} after {self.join_timeout}s")
            self.error = JoinTimeoutError(
                f"Could not join session {self.session_id}. Check the id and try again."
            )
            await self._terminate(ConnectionStatus.FAILED)

    # ------------------------------------------------------------------
    # Inbound snapshot
    # ------------------------------------------------------------------

    async def _on_music(self, value: Any) -> None:
        self._music = value if isinstance(value, dict) else None
        if self._envelope is not None:
            await self._apply_snapshot()

    async def _on_state(self, value: Any) -> None:
        self._envelope = value if isinstance(value, dict) else None
        await self._apply_snapshot()

    async def _apply_snapshot(self) -> None:
        if self.status not in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            return
        if self._envelope is None:
            if self.admitted:
                await self._handle_deleted()
            return

        try:
            sync = paths.join_sync(self._envelope, self._music)
        except ValidationError as e:
            peer_logger.error(f"Ignoring malformed snapshot: {e.error_count()} error(s)")
            return
        self.sync = sync

        present = sync.session_state.find_player(self.player_id) is not None
        if present and not self.admitted:
            self.admitted = True
            self.status = ConnectionStatus.CONNECTED
            self._cancel_timeout()
            self._resolved.set()
            peer_logger.info(f"Joined session {self.session_id} as {self.name}")
            self._save_session()
        elif not present and self.admitted:
            peer_logger.warning(f"{self.name} is no longer on the roster of {self.session_id}")
            await self._terminate(ConnectionStatus.KICKED)
            self._notify()
            return

        if self.admitted:
            self._rename_saved_session(sync.session_state.title)
            await self._check_turn_start()
        self._notify()

    async def _handle_deleted(self) -> None:
        peer_logger.warning(f"Session {self.session_id} was deleted")
        self.deleted = True
        self.last_event = GameDeleted()
        if self.store:
            self.store.remove(self.session_id)
        await self._terminate(ConnectionStatus.DISCONNECTED)
        self._notify()

    async def _check_turn_start(self) -> None:
        mine = self.is_my_turn
        if mine and not self._was_my_turn:
            me = self.me
            log_length = len(self.state.story_log)
            if me is not None and me.last_seen_log_index < log_length:
                await self._mark_seen(log_length)
        self._was_my_turn = mine

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self)

    def _save_session(self) -> None:
        if not self.store:
            return
        self.store.upsert(SavedSession(
            game_id=self.session_id,
            title=self.state.title if self.state else "Untitled Story",
            role="player",
            my_player_id=self.player_id,
            my_player_name=self.name,
        ))
        self._saved_title = self.state.title if self.state else None

    def _rename_saved_session(self, title: str) -> None:
        """Follow the host's title changes in the local bookmark."""
        if not self.store or title == self._saved_title:
            return
        self.store.rename(self.session_id, title)
        self._saved_title = title

    # ------------------------------------------------------------------
    # Outbound requests
    # ------------------------------------------------------------------

    async def _send(self, message: BaseModel, raise_errors: bool = False) -> bool:
        message = message.model_copy(update={"sender_id": self.player_id})
        try:
            await self.context.transport.append(
                paths.actions_path(self.session_id), message_to_wire(message),
            )
            return True
        except TransportError as e:
            if raise_errors:
                raise
            peer_logger.error(f"Sending {message.type} failed: {e}")
            self.context.alert(describe_transport_error(e))
            return False

    async def dispatch(self, action: Union[BaseModel, Dict[str, Any]]) -> bool:
        """Ask the host to apply an action."""
        raw = action if isinstance(action, dict) else action_to_wire(action)
        return await self._send(DispatchActionMessage(payload=DispatchActionPayload(action=raw)))

    async def end_turn(self) -> bool:
        return await self._send(EndTurnMessage())

    async def send_lobby_chat(self, text: str) -> bool:
        text = text.strip()
        if not text:
            return False
        message = ChatMessage(sender_id=self.player_id, sender_name=self.name, text=text)
        return await self._send(LobbyChatMessage(payload=LobbyChatPayload(message=message)))

    async def set_typing(self, channel: str, typing: bool) -> None:
        try:
            await self.typing.set_typing(channel, typing)
        except TransportError as e:
            peer_logger.warning(f"Typing indicator update failed: {e}")

    async def watch_typing(self, channel: str, callback: Callable[[Dict[str, str]], Awaitable[None]]) -> Subscription:
        return self.context.track(await self.typing.watch(channel, callback))

    async def _mark_seen(self, log_index: int) -> bool:
        return await self.dispatch(MarkPlayerSeen(payload=PlayerSeenPayload(
            player_id=self.player_id, log_index=log_index,
        )))

    # ------------------------------------------------------------------
    # Catch-up
    # ------------------------------------------------------------------

    def start_catch_up(self) -> Optional[PlaybackSession]:
        """Playback of everything this player has not seen yet, or None."""
        me = self.me
        if me is None or self.state is None:
            return None
        if me.last_seen_log_index >= len(self.state.story_log):
            return None
        return PlaybackSession(self.state, me.last_seen_log_index)

    async def complete_catch_up(self, playback: PlaybackSession) -> bool:
        """Record the catch-up once playback has actually reached its end."""
        if not playback.reached_end:
            return False
        return await self._mark_seen(playback.seen_index)

    # ------------------------------------------------------------------
    # Leaving
    # ------------------------------------------------------------------

    def _cancel_timeout(self) -> None:
        task = self._timeout_task
        self._timeout_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _terminate(self, status: ConnectionStatus) -> None:
        """Tear down presence and subscriptions, then settle on ``status``."""
        self._cancel_timeout()
        try:
            await self.typing.clear()
            await self.presence.release()
        except TransportError as e:
            peer_logger.warning(f"Presence cleanup failed: {e}")
        await self.context.close()
        self.status = status
        self._resolved.set()

    async def leave(self) -> None:
        """Leave voluntarily. The host sees the presence entry go and removes us."""
        if self.status in (ConnectionStatus.KICKED, ConnectionStatus.FAILED):
            return
        peer_logger.info(f"{self.name} leaving session {self.session_id}")
        await self._terminate(ConnectionStatus.DISCONNECTED)


async def rejoin(
    transport: Transport,
    saved: SavedSession,
    **kwargs,
) -> Union[HostSession, PeerSession]:
    """Reopen a saved session in the role it was saved with."""
    if saved.role == "gm":
        return await HostSession.resume(transport, saved.game_id,
                                        host_player_id=saved.my_player_id, **kwargs)
    return await PeerSession.rejoin(transport, saved, **kwargs)


# ------------------------------------------------------------------
# Launcher
# ------------------------------------------------------------------

class SessionLauncher:
    """Opens sessions with the limits and saved-session file from ``Settings``.

    Usage:
        launcher = SessionLauncher(transport, load_settings(), on_alert=show_banner)
        host = await launcher.host("The Long Night", host_player_name="Gina")
        peer = await launcher.join("123456", "Aria")
        session = await launcher.rejoin(launcher.store.list()[0])
    """

    def __init__(self, transport: Transport, settings: Settings,
                 on_alert: Optional[AlertCallback] = None):
        self.transport = transport
        self.settings = settings
        self.on_alert = on_alert
        self.store = SavedSessionStore(settings.sessions_file)

    def _host_options(self) -> Dict[str, Any]:
        return {
            "max_players": self.settings.max_players,
            "max_state_bytes": self.settings.max_state_bytes,
            "store": self.store,
            "on_alert": self.on_alert,
        }

    def _peer_options(self) -> Dict[str, Any]:
        return {
            "join_timeout": self.settings.join_timeout,
            "store": self.store,
            "on_alert": self.on_alert,
        }

    async def host(self, title: Optional[str] = None,
                   host_player_name: Optional[str] = None) -> HostSession:
        return await HostSession.create(self.transport, title=title,
                                        host_player_name=host_player_name, **self._host_options())

    async def resume(self, session_id: str, host_player_id: Optional[str] = None) -> HostSession:
        return await HostSession.resume(self.transport, session_id,
                                        host_player_id=host_player_id, **self._host_options())

    async def join(self, session_id: str, name: str) -> PeerSession:
        return await PeerSession.join(self.transport, session_id, name, **self._peer_options())

    async def rejoin(self, saved: SavedSession) -> Union[HostSession, PeerSession]:
        if saved.role == "gm":
            return await self.resume(saved.game_id, host_player_id=saved.my_player_id)
        return await PeerSession.rejoin(self.transport, saved, **self._peer_options())

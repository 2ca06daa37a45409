"""
Presence — "who is connected" and "who is typing", with automatic cleanup.

Both use the same pattern: register a disconnect hook that removes the
entry, then write the entry. Leaving voluntarily runs it the other way
round: cancel the hook first, then remove the entry, so the backend never
has a pending removal racing our own.

The host watches the presence subtree and treats every id that vanishes
as a disconnected player.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from network import paths
from network.transport import DisconnectHook, Subscription, Transport

logger = logging.getLogger("Presence")

RemovedCallback = Callable[[str], Awaitable[None]]
TypingCallback = Callable[[Dict[str, str]], Awaitable[None]]


class PresenceManager:
    """Presence entries this client owns, plus a watcher for everyone's."""

    def __init__(self, transport: Transport, session_id: str):
        self.transport = transport
        self.session_id = session_id
        self._hooks: Dict[str, DisconnectHook] = {}

    def is_registered(self, player_id: str) -> bool:
        return player_id in self._hooks

    async def register(self, player_id: str, name: str) -> None:
        path = paths.presence_path(self.session_id, player_id)
        if player_id not in self._hooks:
            self._hooks[player_id] = await self.transport.on_disconnect_remove(path)
        await self.transport.write(path, {"name": name})
        logger.debug(f"Presence registered: {name} ({player_id})")

    async def unregister(self, player_id: str) -> None:
        hook = self._hooks.pop(player_id, None)
        if hook is not None:
            await hook.cancel()
        await self.transport.remove(paths.presence_path(self.session_id, player_id))
        logger.debug(f"Presence removed: {player_id}")

    async def release(self) -> None:
        """Withdraw every registration this client made."""
        for player_id in list(self._hooks):
            await self.unregister(player_id)

    async def watch(self, on_removed: RemovedCallback) -> Subscription:
        """Call ``on_removed(player_id)`` whenever a presence entry disappears."""
        present: Set[str] = set()

        async def on_value(value):
            current = set(value.keys()) if isinstance(value, dict) else set()
            gone = sorted(present - current)
            present.clear()
            present.update(current)
            for player_id in gone:
                logger.info(f"Presence lost for {player_id}")
                await on_removed(player_id)

        return await self.transport.subscribe_value(paths.presence_root(self.session_id), on_value)


class TypingIndicators:
    """Typing flags for one user, per channel ('lobby' or 'in-game')."""

    def __init__(self, transport: Transport, session_id: str, user_id: str, name: str):
        self.transport = transport
        self.session_id = session_id
        self.user_id = user_id
        self.name = name
        self._hooks: Dict[str, DisconnectHook] = {}

    def is_typing(self, channel: str) -> bool:
        return channel in self._hooks

    async def set_typing(self, channel: str, typing: bool) -> None:
        path = paths.typing_path(self.session_id, channel, self.user_id)
        if typing:
            if channel in self._hooks:
                return
            self._hooks[channel] = await self.transport.on_disconnect_remove(path)
            await self.transport.write(path, {"name": self.name})
        else:
            hook = self._hooks.pop(channel, None)
            if hook is None:
                return
            await hook.cancel()
            await self.transport.remove(path)

    async def clear(self) -> None:
        for channel in list(self._hooks):
            await self.set_typing(channel, False)

    async def watch(self, channel: str, callback: TypingCallback,
                    include_self: bool = False) -> Subscription:
        """Call ``callback({user_id: name})`` each time the set of typists changes."""
        async def on_value(value):
            typists = {}
            if isinstance(value, dict):
                for user_id, entry in value.items():
                    if user_id == self.user_id and not include_self:
                        continue
                    name: Optional[str] = entry.get("name") if isinstance(entry, dict) else None
                    typists[user_id] = name or "Someone"
            await callback(typists)

        return await self.transport.subscribe_value(paths.typing_root(self.session_id, channel), on_value)

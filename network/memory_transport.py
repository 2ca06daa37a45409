"""
In-Memory Transport — a realtime JSON tree living in this process.

``RealtimeStore`` is the shared "server": one tree, any number of client
connections. Each ``InMemoryTransport`` is one connection to it. The store
behaves like a hosted realtime database in the ways the protocol cares
about:

- empty lists, empty objects and None are never stored, so a reader sees
  an omitted field where the writer had an empty collection;
- every value crossing the boundary is deep-copied;
- a write larger than ``max_payload_bytes`` is refused;
- ``append`` keys sort in append order;
- disconnect hooks fire when a connection closes or is dropped.

Each subscription has its own queue and pump task, so callbacks for one
subscription run one at a time and in order. ``settle()`` waits until every
queued delivery has been handled, which is what tests use instead of
sleeping.
"""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from network.errors import PayloadTooLargeError, TransportConnectionError
from network.paths import prune, split_path
from network.transport import (
    AppendCallback,
    DisconnectHook,
    Subscription,
    Transport,
    ValueCallback,
)

logger = logging.getLogger("MemoryTransport")

_UNSET = object()


class _Listener(ABC):
    """One subscription's delivery queue and pump."""

    def __init__(self, owner: "InMemoryTransport", parts: List[str], callback: Callable):
        self.owner = owner
        self.parts = parts
        self.callback = callback
        self.queue: asyncio.Queue = asyncio.Queue()
        self.pending = 0
        self.active = True
        self.task = asyncio.get_running_loop().create_task(self._pump())

    def push(self, args: Tuple) -> None:
        if not self.active:
            return
        self.pending += 1
        self.queue.put_nowait(args)

    async def _pump(self) -> None:
        while self.active:
            args = await self.queue.get()
            try:
                if self.active:
                    await self.callback(*args)
            except Exception as e:
                logger.error(f"Subscriber on /{'/'.join(self.parts)} failed: {e}", exc_info=True)
            finally:
                self.pending -= 1
                self.queue.task_done()
        self._drain()

    def _drain(self) -> None:
        while not self.queue.empty():
            self.queue.get_nowait()
            self.pending -= 1
            self.queue.task_done()

    async def stop(self) -> None:
        self.active = False
        if self.task is asyncio.current_task():
            # Unsubscribing from inside our own callback: the pump exits
            # after this callback returns.
            return
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self._drain()

    @abstractmethod
    def check(self, store: "RealtimeStore") -> None:
        """Queue whatever changed under this path since the last check."""


class _ValueListener(_Listener):

    def __init__(self, *args):
        super().__init__(*args)
        self.last = _UNSET

    def check(self, store: "RealtimeStore") -> None:
        current = store.get(self.parts)
        if self.last is _UNSET or current != self.last:
            self.last = current
            self.push((copy.deepcopy(current),))


class _ChildListener(_Listener):

    def __init__(self, *args):
        super().__init__(*args)
        self.seen = set()

    def check(self, store: "RealtimeStore") -> None:
        node = store.get(self.parts, copy_value=False)
        if not isinstance(node, dict):
            return
        for key in sorted(node):
            if key not in self.seen:
                self.seen.add(key)
                self.push((key, copy.deepcopy(node[key])))


class RealtimeStore:
    """The shared tree plus everyone listening to it."""

    def __init__(self, max_payload_bytes: Optional[int] = None):
        self.max_payload_bytes = max_payload_bytes
        self._root: Dict[str, Any] = {}
        self._listeners: List[_Listener] = []
        self._key_counter = 0

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    def get(self, parts: List[str], copy_value: bool = True) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node) if copy_value else node

    def set(self, parts: List[str], value: Any) -> None:
        value = prune(copy.deepcopy(value))
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            self._notify()
            return

        node = self._root
        chain = []
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[part] = child
            chain.append((node, part))
            node = child

        if value is None:
            node.pop(parts[-1], None)
            for parent, key in reversed(chain):
                if parent[key]:
                    break
                del parent[key]
        else:
            node[parts[-1]] = value
        self._notify()

    def next_key(self) -> str:
        self._key_counter += 1
        return f"k{self._key_counter:012d}"

    def check_size(self, value: Any) -> None:
        if self.max_payload_bytes is None:
            return
        size = len(json.dumps(value, separators=(",", ":")).encode("utf-8"))
        if size > self.max_payload_bytes:
            raise PayloadTooLargeError(
                f"Write of {size} bytes exceeds the {self.max_payload_bytes} byte limit"
            )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def _notify(self) -> None:
        for listener in list(self._listeners):
            if listener.active:
                listener.check(self)

    def add_listener(self, listener: _Listener) -> None:
        self._listeners.append(listener)
        listener.check(self)

    def remove_listener(self, listener: _Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def settle(self, rounds: int = 1000) -> None:
        """Wait until no subscription has deliveries queued or in flight."""
        for _ in range(rounds):
            await asyncio.sleep(0)
            busy = [l for l in self._listeners if l.pending]
            if not busy:
                await asyncio.sleep(0)
                if not any(l.pending for l in self._listeners):
                    return
                continue
            for listener in busy:
                await listener.queue.join()
        logger.warning("settle() gave up with deliveries still pending")

    def connect(self) -> "InMemoryTransport":
        return InMemoryTransport(self)


class InMemoryTransport(Transport):
    """One client connection to a ``RealtimeStore``."""

    def __init__(self, store: RealtimeStore):
        self.store = store
        self.connected = True
        self._listeners: List[_Listener] = []
        self._disconnect_paths: List[Tuple[DisconnectHook, List[str]]] = []

    def _require_connection(self) -> None:
        if not self.connected:
            raise TransportConnectionError("Transport is closed")

    async def _subscribe(self, listener_cls, path: str, callback) -> Subscription:
        self._require_connection()
        listener = listener_cls(self, split_path(path), callback)
        self._listeners.append(listener)
        self.store.add_listener(listener)

        async def cancel():
            self.store.remove_listener(listener)
            if listener in self._listeners:
                self._listeners.remove(listener)
            await listener.stop()

        return Subscription(path, cancel)

    async def subscribe_value(self, path: str, callback: ValueCallback) -> Subscription:
        return await self._subscribe(_ValueListener, path, callback)

    async def subscribe_append(self, path: str, callback: AppendCallback) -> Subscription:
        return await self._subscribe(_ChildListener, path, callback)

    async def read(self, path: str) -> Optional[Any]:
        self._require_connection()
        return self.store.get(split_path(path))

    async def write(self, path: str, value: Any) -> None:
        self._require_connection()
        self.store.check_size(value)
        self.store.set(split_path(path), value)

    async def append(self, path: str, value: Any) -> str:
        self._require_connection()
        self.store.check_size(value)
        key = self.store.next_key()
        self.store.set(split_path(path) + [key], value)
        return key

    async def remove(self, path: str) -> None:
        self._require_connection()
        self.store.set(split_path(path), None)

    async def on_disconnect_remove(self, path: str) -> DisconnectHook:
        self._require_connection()
        parts = split_path(path)

        async def cancel():
            self._disconnect_paths[:] = [(h, p) for h, p in self._disconnect_paths if h is not hook]

        hook = DisconnectHook(path, cancel)
        self._disconnect_paths.append((hook, parts))
        return hook

    async def _drop(self) -> None:
        if not self.connected:
            return
        self.connected = False
        for listener in list(self._listeners):
            self.store.remove_listener(listener)
            await listener.stop()
        self._listeners.clear()
        hooks, self._disconnect_paths = self._disconnect_paths, []
        for hook, parts in hooks:
            hook.active = False
            logger.debug(f"Disconnect hook firing: /{'/'.join(parts)}")
            self.store.set(parts, None)

    async def close(self) -> None:
        await self._drop()

    async def simulate_disconnect(self) -> None:
        """Drop the connection abruptly, as if the network went away."""
        logger.info("Simulating abrupt disconnect")
        await self._drop()

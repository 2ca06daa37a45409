"""
Channel Transport — the realtime store the protocol layer talks through.

A transport is one client connection to a tree of JSON values addressed by
slash-separated paths. The protocol needs only a handful of primitives:

- ``subscribe_value``: latest value at a path, delivered right away and
  then on every change;
- ``subscribe_append``: each child added under a path, in key order,
  including the children that existed before subscribing;
- ``read``, ``write``, ``append`` (generated, ordered keys) and ``remove``;
- ``on_disconnect_remove``: a removal the backend performs if this
  connection goes away without cancelling it first.

Delivery is at least once and ordered per path. Callbacks are coroutines
and are awaited one at a time per subscription. Errors are raised as
``network.errors.TransportError`` subclasses.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

ValueCallback = Callable[[Any], Awaitable[None]]
AppendCallback = Callable[[str, Any], Awaitable[None]]


class Subscription:
    """Handle returned by the ``subscribe_*`` calls.

    No callback fires after ``unsubscribe()`` returns. Unsubscribing twice
    is harmless.
    """

    def __init__(self, path: str, cancel: Callable[[], Awaitable[None]]):
        self.path = path
        self._cancel = cancel
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._cancel()


class DisconnectHook:
    """A pending server-side removal. ``cancel()`` withdraws it."""

    def __init__(self, path: str, cancel: Callable[[], Awaitable[None]]):
        self.path = path
        self._cancel = cancel
        self.active = True

    async def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._cancel()


class Transport(ABC):

    @abstractmethod
    async def subscribe_value(self, path: str, callback: ValueCallback) -> Subscription:
        ...

    @abstractmethod
    async def subscribe_append(self, path: str, callback: AppendCallback) -> Subscription:
        ...

    @abstractmethod
    async def read(self, path: str) -> Optional[Any]:
        """One-shot read. None if nothing is stored there."""

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """Replace the value at ``path``. Writing None removes it."""

    @abstractmethod
    async def append(self, path: str, value: Any) -> str:
        """Add a child under ``path`` with a fresh ordered key; returns the key."""

    @abstractmethod
    async def remove(self, path: str) -> None:
        ...

    @abstractmethod
    async def on_disconnect_remove(self, path: str) -> DisconnectHook:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Drop the connection. Pending disconnect hooks fire."""

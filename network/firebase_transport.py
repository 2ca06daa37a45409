"""
Firebase Transport — Realtime Database over its REST + streaming API (Async)

    Client  --(PUT/POST/DELETE/GET .json)-->  Realtime Database
    Client  <--(text/event-stream)---------  Realtime Database

Writes are plain REST calls on ``<database_url>/<path>.json``. Each
subscription holds one streaming GET open; the server sends a ``put`` with
the full value first and then ``put``/``patch`` events for every change
below the path. The stream handler keeps a local copy of that subtree and
hands it to the subscriber.

Known gap: the REST API has no server-side onDisconnect. Disconnect hooks
registered here only run when ``close()`` is called; a client that dies
abruptly leaves its presence entry behind until someone removes it.

Requires:
  - FORGE_DATABASE_URL: e.g. https://my-project-default-rtdb.firebaseio.com
  - FORGE_AUTH_TOKEN: database secret or ID token (optional for open rules)
"""

import asyncio
import copy
import json
import logging
import random
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp

from network.errors import (
    PayloadTooLargeError,
    RETRYABLE_ERRORS,
    TransportAuthError,
    TransportConnectionError,
    TransportError,
    TransportTimeoutError,
)
from network.paths import prune, split_path
from network.transport import (
    AppendCallback,
    DisconnectHook,
    Subscription,
    Transport,
    ValueCallback,
)
from tools.rate_limiter import RateLimiter, database_bucket

logger = logging.getLogger('FirebaseTransport')

_UNSET = object()


# ----------------------------------------------------------------------
# Stream parsing (pure, no IO)
# ----------------------------------------------------------------------

class SSEParser:
    """Incremental text/event-stream parser.

    Feed it one line at a time (without the trailing newline). Returns
    ``(event, data)`` when a blank line completes an event, else None.
    ``data`` is JSON-decoded; undecodable data comes back as the raw string.
    """

    def __init__(self):
        self._event: Optional[str] = None
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[Tuple[str, Any]]:
        if line == "":
            if self._event is None and not self._data:
                return None
            event = self._event or "message"
            raw = "\n".join(self._data)
            self._event, self._data = None, []
            try:
                data = json.loads(raw) if raw else None
            except json.JSONDecodeError:
                data = raw
            return event, data
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None


def parse_sse_lines(lines: Iterable[str]) -> List[Tuple[str, Any]]:
    parser = SSEParser()
    events = []
    for line in lines:
        event = parser.feed(line.rstrip("\r\n"))
        if event:
            events.append(event)
    return events


def _set_in(tree: Any, parts: List[str], value: Any) -> Any:
    if not parts:
        return copy.deepcopy(value)
    root = tree if isinstance(tree, dict) else {}
    root = dict(root)
    head, rest = parts[0], parts[1:]
    child = _set_in(root.get(head), rest, value)
    if child is None:
        root.pop(head, None)
    else:
        root[head] = child
    return root or None


def apply_stream_event(tree: Any, event: str, data: Any) -> Any:
    """Fold one ``put``/``patch`` stream event into the local subtree copy.

    Any other event type leaves the tree as it was.
    """
    if not isinstance(data, dict) or "path" not in data:
        return tree
    parts = split_path(data["path"])
    if event == "put":
        return prune(_set_in(tree, parts, data.get("data")))
    if event == "patch":
        for key, value in (data.get("data") or {}).items():
            tree = _set_in(tree, parts + split_path(key), value)
        return prune(tree)
    return tree


def error_for_status(status: int, body: str) -> Optional[TransportError]:
    """Map an HTTP status to the matching transport error (None for success)."""
    if status < 400:
        return None
    if status in (401, 403):
        return TransportAuthError(f"Auth failed ({status}): {body}")
    if status == 413:
        return PayloadTooLargeError(f"Payload too large ({status}): {body}")
    if status == 429 or status >= 500:
        return TransportConnectionError(f"Server error ({status}): {body}")
    return TransportError(f"HTTP {status}: {body}")


# ----------------------------------------------------------------------
# Transport
# ----------------------------------------------------------------------

class FirebaseTransport(Transport):
    """Realtime Database connection.

    Usage:
        transport = FirebaseTransport(settings.database_url, settings.auth_token)
        await transport.connect()
        sub = await transport.subscribe_value("games/123456/state", on_state)
        ...
        await transport.close()     # runs disconnect hooks, stops streams
    """

    def __init__(self, database_url: str, auth_token: Optional[str] = None,
                 limiter: Optional[RateLimiter] = None):
        self.database_url = database_url.rstrip('/')
        self.auth_token = auth_token
        self.limiter = limiter or database_bucket()
        self._session: Optional[aiohttp.ClientSession] = None
        self._streams: List[Tuple[asyncio.Task, asyncio.Event]] = []
        self._disconnect_paths: List[Tuple[DisconnectHook, str]] = []

        # Retry settings
        self.max_retries = 3
        self.base_delay = 1.0  # seconds; doubles each retry (1, 2, 4)

    # ------------------------------------------------------------------
    # Internal HTTP layer
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{'/'.join(split_path(path))}.json"

    def _params(self) -> Dict[str, str]:
        return {'auth': self.auth_token} if self.auth_token else {}

    async def connect(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            raise TransportConnectionError("No active aiohttp session — call connect() first.")
        return self._session

    async def _raw_request(self, method: str, path: str, body: Any = _UNSET, timeout: int = 15) -> Any:
        """Execute a single HTTP request (no retry)."""
        session = self._require_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        kwargs: Dict[str, Any] = {'params': self._params(), 'timeout': client_timeout}
        if body is not _UNSET:
            kwargs['data'] = json.dumps(body)
            kwargs['headers'] = {'Content-Type': 'application/json'}

        try:
            async with session.request(method, self._url(path), **kwargs) as resp:
                error = error_for_status(resp.status, await resp.text() if resp.status >= 400 else "")
                if error:
                    raise error
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransportConnectionError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(f"Request timed out after {timeout}s: {path}") from e

    async def _request(self, method: str, path: str, body: Any = _UNSET, timeout: int = 15) -> Any:
        """HTTP request with rate limiting and retry."""
        await self.limiter.acquire()

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self._raw_request(method, path, body=body, timeout=timeout)
            except RETRYABLE_ERRORS as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                    logger.warning(
                        f"Database request failed (attempt {attempt + 1}/{self.max_retries}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)
            # Non-retryable errors (Auth, PayloadTooLarge) propagate immediately

        raise last_error  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def read(self, path: str) -> Optional[Any]:
        return prune(await self._request('GET', path))

    async def write(self, path: str, value: Any) -> None:
        await self._request('PUT', path, body=value)

    async def append(self, path: str, value: Any) -> str:
        result = await self._request('POST', path, body=value)
        return result['name']

    async def remove(self, path: str) -> None:
        await self._request('DELETE', path)

    async def on_disconnect_remove(self, path: str) -> DisconnectHook:
        async def cancel():
            self._disconnect_paths[:] = [(h, p) for h, p in self._disconnect_paths if h is not hook]

        hook = DisconnectHook(path, cancel)
        self._disconnect_paths.append((hook, path))
        return hook

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream(self, path: str, on_tree: Callable[[Any], Any], stopped: asyncio.Event) -> None:
        """Keep one event stream open for ``path``, reconnecting on failure.

        Returns as soon as ``stopped`` is set, including when the subscriber
        itself sets it from inside ``on_tree``.
        """
        headers = {'Accept': 'text/event-stream'}
        attempt = 0
        while not stopped.is_set():
            tree: Any = None
            parser = SSEParser()
            try:
                session = self._require_session()
                async with session.get(self._url(path), params=self._params(), headers=headers,
                                       timeout=aiohttp.ClientTimeout(total=None)) as resp:
                    error = error_for_status(resp.status, await resp.text() if resp.status >= 400 else "")
                    if error:
                        raise error
                    attempt = 0
                    async for raw in resp.content:
                        event = parser.feed(raw.decode('utf-8').rstrip('\r\n'))
                        if event is None:
                            continue
                        name, data = event
                        if name in ('cancel', 'auth_revoked'):
                            raise TransportAuthError(f"Stream {name} on /{path}: {data}")
                        if name in ('put', 'patch'):
                            tree = apply_stream_event(tree, name, data)
                            if stopped.is_set():
                                return
                            try:
                                await on_tree(tree)
                            except Exception as e:
                                logger.error(f"Subscriber on /{path} failed: {e}", exc_info=True)
                            if stopped.is_set():
                                return
                if stopped.is_set():
                    return
                logger.info(f"Stream for /{path} ended, reconnecting")
            except RETRYABLE_ERRORS + (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if stopped.is_set():
                    return
                attempt += 1
                delay = min(30.0, self.base_delay * (2 ** min(attempt, 5))) + random.uniform(0, 0.5)
                logger.warning(f"Stream for /{path} dropped, retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)
            except TransportError as e:
                logger.error(f"Stream for /{path} stopped: {e}")
                return

    def _start_stream(self, path: str, on_tree) -> Subscription:
        self._require_session()
        stopped = asyncio.Event()
        task = asyncio.get_running_loop().create_task(self._stream(path, on_tree, stopped))
        entry = (task, stopped)
        self._streams.append(entry)

        async def cancel():
            stopped.set()
            if entry in self._streams:
                self._streams.remove(entry)
            if task is asyncio.current_task():
                # Called from this stream's own callback; the loop exits when it returns.
                return
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        return Subscription(path, cancel)

    async def subscribe_value(self, path: str, callback: ValueCallback) -> Subscription:
        last = [_UNSET]

        async def on_tree(tree):
            if last[0] is _UNSET or tree != last[0]:
                last[0] = copy.deepcopy(tree)
                await callback(copy.deepcopy(tree))

        return self._start_stream(path, on_tree)

    async def subscribe_append(self, path: str, callback: AppendCallback) -> Subscription:
        seen = set()

        async def on_tree(tree):
            if not isinstance(tree, dict):
                return
            for key in sorted(tree):
                if key not in seen:
                    seen.add(key)
                    await callback(key, copy.deepcopy(tree[key]))

        return self._start_stream(path, on_tree)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Run pending disconnect hooks, stop every stream, close the session."""
        hooks, self._disconnect_paths = self._disconnect_paths, []
        for hook, path in hooks:
            hook.active = False
            try:
                await self._raw_request('DELETE', path, body=_UNSET)
            except TransportError as e:
                logger.warning(f"Disconnect cleanup for /{path} failed: {e}")

        streams, self._streams = self._streams, []
        current = asyncio.current_task()
        for task, stopped in streams:
            stopped.set()
            if task is not current:
                task.cancel()
        for task, _ in streams:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        logger.info("Firebase transport closed.")

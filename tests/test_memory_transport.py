"""
Tests for network/memory_transport.py — the in-process realtime tree.

Listeners need a running event loop, so every test builds its store and
connections inside ``run()``.
"""

import asyncio

import pytest

from network.errors import PayloadTooLargeError, TransportConnectionError
from network.memory_transport import RealtimeStore, _Listener
from network.paths import prune


class TestPrune:

    def test_drops_empty_values(self):
        assert prune({"a": [], "b": {}, "c": None, "d": 0, "e": ""}) == {"d": 0, "e": ""}

    def test_nested(self):
        assert prune({"a": {"b": {"c": []}}, "x": [1, None, {}]}) == {"x": [1]}

    def test_nothing_left(self):
        assert prune({"a": {"b": None}}) is None


class TestReadWrite:

    def test_write_then_read(self):
        async def run():
            conn = RealtimeStore().connect()
            await conn.write("games/1/state", {"title": "T", "storyLog": []})
            assert await conn.read("games/1/state") == {"title": "T"}
            assert await conn.read("games/1/missing") is None
        asyncio.run(run())

    def test_values_are_copied(self):
        async def run():
            conn = RealtimeStore().connect()
            value = {"list": [1, 2]}
            await conn.write("a", value)
            value["list"].append(3)
            read = await conn.read("a")
            read["list"].append(4)
            assert await conn.read("a") == {"list": [1, 2]}
        asyncio.run(run())

    def test_remove_cleans_up_empty_parents(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            await conn.write("games/1/presence/p1", {"name": "Amy"})
            await conn.remove("games/1/presence/p1")
            assert await conn.read("games/1") is None
            assert store.get([]) == {}
        asyncio.run(run())

    def test_append_keys_sort_in_order(self):
        async def run():
            conn = RealtimeStore().connect()
            keys = [await conn.append("inbox", {"n": i}) for i in range(12)]
            assert keys == sorted(keys)
            assert len(set(keys)) == 12
        asyncio.run(run())

    def test_oversized_write_is_refused(self):
        async def run():
            conn = RealtimeStore(max_payload_bytes=64).connect()
            with pytest.raises(PayloadTooLargeError):
                await conn.write("a", {"blob": "x" * 100})
            with pytest.raises(PayloadTooLargeError):
                await conn.append("b", {"blob": "x" * 100})
            assert await conn.read("a") is None
        asyncio.run(run())

    def test_closed_connection_raises(self):
        async def run():
            conn = RealtimeStore().connect()
            await conn.close()
            with pytest.raises(TransportConnectionError):
                await conn.read("a")
        asyncio.run(run())


class TestSubscriptions:

    def test_listener_base_needs_a_check(self):
        with pytest.raises(TypeError):
            _Listener(None, [], None)

    def test_value_subscription_fires_on_start_and_change(self):
        async def run():
            store = RealtimeStore()
            writer = store.connect()
            reader = store.connect()
            seen = []

            async def on_value(value):
                seen.append(value)

            await reader.subscribe_value("games/1/state", on_value)
            await store.settle()
            await writer.write("games/1/state", {"v": 1})
            await writer.write("games/1/other", {"v": 9})
            await writer.write("games/1/state", {"v": 2})
            await writer.remove("games/1/state")
            await store.settle()

            assert seen == [None, {"v": 1}, {"v": 2}, None]
        asyncio.run(run())

    def test_append_subscription_replays_then_follows(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            await conn.append("inbox", {"n": 1})
            received = []

            async def on_child(key, value):
                received.append(value["n"])

            await conn.subscribe_append("inbox", on_child)
            await conn.append("inbox", {"n": 2})
            await conn.append("inbox", {"n": 3})
            await store.settle()

            assert received == [1, 2, 3]
        asyncio.run(run())

    def test_removed_child_is_not_redelivered(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            received = []

            async def on_child(key, value):
                received.append(key)
                await conn.remove(f"inbox/{key}")

            await conn.subscribe_append("inbox", on_child)
            await conn.append("inbox", {"n": 1})
            await conn.append("inbox", {"n": 2})
            await store.settle()

            assert len(received) == 2
            assert await conn.read("inbox") is None
        asyncio.run(run())

    def test_unsubscribe_stops_delivery(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            seen = []

            async def on_value(value):
                seen.append(value)

            sub = await conn.subscribe_value("a", on_value)
            await store.settle()
            await sub.unsubscribe()
            await sub.unsubscribe()
            await conn.write("a", 1)
            await store.settle()

            assert seen == [None]
            assert sub.active is False
        asyncio.run(run())

    def test_unsubscribe_from_own_callback(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            seen = []
            holder = {}

            async def on_value(value):
                seen.append(value)
                if value == 1:
                    await holder["sub"].unsubscribe()

            holder["sub"] = await conn.subscribe_value("a", on_value)
            await store.settle()
            await conn.write("a", 1)
            await store.settle()
            await conn.write("a", 2)
            await store.settle()

            assert seen == [None, 1]
        asyncio.run(run())

    def test_failing_callback_does_not_kill_the_subscription(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            seen = []

            async def on_value(value):
                seen.append(value)
                if value == 1:
                    raise RuntimeError("boom")

            await conn.subscribe_value("a", on_value)
            await conn.write("a", 1)
            await store.settle()
            await conn.write("a", 2)
            await store.settle()

            assert seen[-2:] == [1, 2]
        asyncio.run(run())


class TestDisconnectHooks:

    def test_hook_fires_on_abrupt_disconnect(self):
        async def run():
            store = RealtimeStore()
            peer = store.connect()
            watcher = store.connect()
            await peer.on_disconnect_remove("games/1/presence/p1")
            await peer.write("games/1/presence/p1", {"name": "Amy"})

            await peer.simulate_disconnect()

            assert await watcher.read("games/1/presence/p1") is None
            assert peer.connected is False
        asyncio.run(run())

    def test_cancelled_hook_does_not_fire(self):
        async def run():
            store = RealtimeStore()
            peer = store.connect()
            watcher = store.connect()
            hook = await peer.on_disconnect_remove("games/1/presence/p1")
            await peer.write("games/1/presence/p1", {"name": "Amy"})

            await hook.cancel()
            await peer.close()

            assert await watcher.read("games/1/presence/p1") == {"name": "Amy"}
        asyncio.run(run())

    def test_close_fires_hooks_and_stops_listeners(self):
        async def run():
            store = RealtimeStore()
            peer = store.connect()
            watcher = store.connect()
            seen = []

            async def on_value(value):
                seen.append(value)

            await peer.subscribe_value("games/1/state", on_value)
            await peer.on_disconnect_remove("games/1/typing/lobby/p1")
            await peer.write("games/1/typing/lobby/p1", {"name": "Amy"})
            await store.settle()

            await peer.close()
            await watcher.write("games/1/state", {"v": 1})
            await store.settle()

            assert seen == [None]
            assert await watcher.read("games/1/typing") is None
        asyncio.run(run())

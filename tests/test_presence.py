"""
Tests for network/presence.py — presence registration and typing indicators.
"""

import asyncio

import pytest

from network import paths
from network.memory_transport import RealtimeStore
from network.presence import PresenceManager, TypingIndicators


class TestPresenceManager:

    def test_register_and_unregister(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            presence = PresenceManager(conn, "123456")

            await presence.register("p1", "Amy")
            assert presence.is_registered("p1")
            assert await conn.read(paths.presence_path("123456", "p1")) == {"name": "Amy"}

            await presence.unregister("p1")
            assert not presence.is_registered("p1")
            assert await conn.read(paths.presence_root("123456")) is None
        asyncio.run(run())

    def test_abrupt_disconnect_removes_entry(self):
        async def run():
            store = RealtimeStore()
            peer = store.connect()
            host = store.connect()
            await PresenceManager(peer, "123456").register("p1", "Amy")

            await peer.simulate_disconnect()

            assert await host.read(paths.presence_path("123456", "p1")) is None
        asyncio.run(run())

    def test_watch_reports_each_vanished_id(self):
        async def run():
            store = RealtimeStore()
            host = store.connect()
            amy = store.connect()
            ben = store.connect()
            lost = []

            async def on_removed(player_id):
                lost.append(player_id)

            await PresenceManager(host, "123456").watch(on_removed)
            await PresenceManager(amy, "123456").register("p-amy", "Amy")
            await PresenceManager(ben, "123456").register("p-ben", "Ben")
            await store.settle()
            assert lost == []

            await amy.simulate_disconnect()
            await store.settle()
            assert lost == ["p-amy"]

            await ben.close()
            await store.settle()
            assert lost == ["p-amy", "p-ben"]
        asyncio.run(run())

    def test_release_withdraws_everything(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            presence = PresenceManager(conn, "123456")
            await presence.register("p1", "Amy")
            await presence.register("p2", "Amy's alt")

            await presence.release()

            assert await conn.read(paths.presence_root("123456")) is None
        asyncio.run(run())


class TestTypingIndicators:

    def test_set_and_clear(self):
        async def run():
            conn = RealtimeStore().connect()
            typing = TypingIndicators(conn, "123456", "p1", "Amy")

            await typing.set_typing("lobby", True)
            await typing.set_typing("lobby", True)
            assert typing.is_typing("lobby")
            assert await conn.read(paths.typing_path("123456", "lobby", "p1")) == {"name": "Amy"}

            await typing.clear()
            assert not typing.is_typing("lobby")
            assert await conn.read(paths.typing_root("123456", "lobby")) is None
        asyncio.run(run())

    def test_unknown_channel_is_rejected(self):
        async def run():
            conn = RealtimeStore().connect()
            with pytest.raises(ValueError):
                await TypingIndicators(conn, "123456", "p1", "Amy").set_typing("backstage", True)
        asyncio.run(run())

    def test_watch_excludes_self_by_default(self):
        async def run():
            store = RealtimeStore()
            amy_conn = store.connect()
            ben_conn = store.connect()
            amy = TypingIndicators(amy_conn, "123456", "p-amy", "Amy")
            ben = TypingIndicators(ben_conn, "123456", "p-ben", "Ben")
            updates = []

            async def on_typists(typists):
                updates.append(typists)

            await amy.watch("in-game", on_typists)
            await amy.set_typing("in-game", True)
            await ben.set_typing("in-game", True)
            await store.settle()
            assert updates[-1] == {"p-ben": "Ben"}

            await ben_conn.simulate_disconnect()
            await store.settle()
            assert updates[-1] == {}
        asyncio.run(run())

    def test_channels_are_independent(self):
        async def run():
            store = RealtimeStore()
            conn = store.connect()
            typing = TypingIndicators(conn, "123456", "p1", "Amy")
            await typing.set_typing("lobby", True)
            await typing.set_typing("in-game", False)
            assert typing.is_typing("lobby")
            assert not typing.is_typing("in-game")
        asyncio.run(run())

"""
tests.test_connection_hub
~~~~~~~~~~~~~~~~~~~~~~~~~

ConnectionHub 注册、房间分组与推送测试。
"""
from __future__ import annotations

import pytest

from conftest import events_named, make_conn, sent_events

from app.services.connection_hub import ConnectionHub


class TestBinding:
    def test_register_and_unregister(self) -> None:
        hub = ConnectionHub()
        conn = make_conn("u1")
        hub.register(conn)
        hub.bind(conn, "r1")
        hub.bind(conn, "r2")

        assert hub.online_count == 1
        assert hub.rooms_of(conn) == ["r1", "r2"]

        rooms = hub.unregister(conn)
        assert rooms == ["r1", "r2"]
        assert hub.online_count == 0
        assert hub.connections_in("r1") == []
        assert hub.connections_of_user("u1") == []

    def test_unbind(self) -> None:
        hub = ConnectionHub()
        conn = make_conn("u1")
        hub.register(conn)
        hub.bind(conn, "r1")
        hub.unbind(conn, "r1")

        assert not hub.is_bound(conn, "r1")
        assert hub.connections_in("r1") == []

    def test_drop_room_unbinds_everyone(self) -> None:
        hub = ConnectionHub()
        a, b = make_conn("u1"), make_conn("u2")
        for conn in (a, b):
            hub.register(conn)
            hub.bind(conn, "r1")

        hub.drop_room("r1")
        assert hub.rooms_of(a) == []
        assert hub.rooms_of(b) == []

    def test_online_users_deduplicates_per_user(self) -> None:
        hub = ConnectionHub()
        tab1, tab2 = make_conn("u1", "Alice"), make_conn("u1", "Alice")
        other = make_conn("u2", "Bob")
        for conn in (tab1, tab2, other):
            hub.register(conn)
            hub.bind(conn, "r1")

        users = hub.online_users("r1")
        assert sorted(u.user_id for u in users) == ["u1", "u2"]

    def test_multiple_connections_per_user(self) -> None:
        hub = ConnectionHub()
        tab1, tab2 = make_conn("u1"), make_conn("u1")
        hub.register(tab1)
        hub.register(tab2)
        assert len(hub.connections_of_user("u1")) == 2

        hub.unregister(tab1)
        assert hub.connections_of_user("u1") == [tab2]


class TestPush:
    @pytest.mark.asyncio
    async def test_broadcast_excludes_sender(self) -> None:
        hub = ConnectionHub()
        sender, receiver = make_conn("u1"), make_conn("u2")
        for conn in (sender, receiver):
            hub.register(conn)
            hub.bind(conn, "r1")

        await hub.broadcast("r1", "userTyping", {"user_id": "u1"}, exclude=sender)

        assert sent_events(sender) == []
        assert events_named(receiver, "userTyping") == [{"user_id": "u1"}]

    @pytest.mark.asyncio
    async def test_broadcast_excludes_every_connection_of_user(self) -> None:
        hub = ConnectionHub()
        tab1, tab2, other = make_conn("u1"), make_conn("u1"), make_conn("u2")
        for conn in (tab1, tab2, other):
            hub.register(conn)
            hub.bind(conn, "r1")

        await hub.broadcast("r1", "chatDeleted", {"room_id": "r1"}, exclude_user="u1")

        assert sent_events(tab1) == []
        assert sent_events(tab2) == []
        assert events_named(other, "chatDeleted") == [{"room_id": "r1"}]

    @pytest.mark.asyncio
    async def test_broadcast_only_reaches_bound_connections(self) -> None:
        hub = ConnectionHub()
        inside, outside = make_conn("u1"), make_conn("u2")
        hub.register(inside)
        hub.register(outside)
        hub.bind(inside, "r1")

        await hub.broadcast("r1", "newMessage", {"body": "hi"})

        assert len(events_named(inside, "newMessage")) == 1
        assert sent_events(outside) == []

    @pytest.mark.asyncio
    async def test_failed_send_does_not_block_others(self) -> None:
        """某个连接推送失败时，其他连接照常收到广播。"""
        hub = ConnectionHub()
        broken, healthy = make_conn("u1"), make_conn("u2")
        broken.websocket.send_json.side_effect = RuntimeError("socket closed")
        for conn in (broken, healthy):
            hub.register(conn)
            hub.bind(conn, "r1")

        await hub.broadcast("r1", "newMessage", {"body": "hi"})

        assert events_named(healthy, "newMessage") == [{"body": "hi"}]

    @pytest.mark.asyncio
    async def test_emit_swallows_send_failure(self) -> None:
        hub = ConnectionHub()
        conn = make_conn("u1")
        conn.websocket.send_json.side_effect = RuntimeError("socket closed")

        await hub.emit(conn, "errorMessage", "boom")

    @pytest.mark.asyncio
    async def test_emit_to_user_reaches_all_tabs(self) -> None:
        hub = ConnectionHub()
        tab1, tab2 = make_conn("u1"), make_conn("u1")
        hub.register(tab1)
        hub.register(tab2)

        await hub.emit_to_user("u1", "chatCreated", {"room_id": "r"})
        await hub.emit_to_user("offline", "chatCreated", {"room_id": "r"})

        assert len(events_named(tab1, "chatCreated")) == 1
        assert len(events_named(tab2, "chatCreated")) == 1

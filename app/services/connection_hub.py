"""
app.services.connection_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接中心 —— 维护进程内全部在线连接、连接与房间的绑定关系（房间分组）以及
每个用户的私有通道，并提供按连接 / 按房间 / 按用户的推送能力。

房间的“在线成员”就是当前绑定到该房间分组的连接集合，与持久化成员列表无关：
持久化成员可能离线。用户私有通道不是房间分组，不参与房间广播。
"""
from __future__ import annotations

import asyncio
from typing import Any

from app.core.logging import get_logger
from app.schemas.chat import OnlineUser
from app.services.connection import Connection, encode_payload

logger = get_logger(__name__)


class ConnectionHub:
    """在线连接与房间分组管理器（单事件循环内使用，无需加锁）。"""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._users: dict[str, dict[str, Connection]] = {}
        self._groups: dict[str, dict[str, Connection]] = {}
        self._bindings: dict[str, set[str]] = {}

    # ── 注册 / 注销 ─────────────────────────────────────────────────

    def register(self, conn: Connection) -> None:
        """登记新连接，并加入其用户私有通道。"""
        self._connections[conn.id] = conn
        self._users.setdefault(conn.user_id, {})[conn.id] = conn
        self._bindings.setdefault(conn.id, set())

    def unregister(self, conn: Connection) -> list[str]:
        """注销连接并解除全部房间绑定。

        Returns:
            该连接注销前绑定的房间 ID 列表。
        """
        rooms = self.rooms_of(conn)
        for room_id in rooms:
            self.unbind(conn, room_id)
        self._bindings.pop(conn.id, None)
        self._connections.pop(conn.id, None)

        channel = self._users.get(conn.user_id)
        if channel is not None:
            channel.pop(conn.id, None)
            if not channel:
                del self._users[conn.user_id]
        return rooms

    # ── 房间绑定 ─────────────────────────────────────────────────────

    def bind(self, conn: Connection, room_id: str) -> None:
        self._groups.setdefault(room_id, {})[conn.id] = conn
        self._bindings.setdefault(conn.id, set()).add(room_id)

    def unbind(self, conn: Connection, room_id: str) -> None:
        group = self._groups.get(room_id)
        if group is not None:
            group.pop(conn.id, None)
            if not group:
                del self._groups[room_id]
        bound = self._bindings.get(conn.id)
        if bound is not None:
            bound.discard(room_id)

    def drop_room(self, room_id: str) -> None:
        """解除所有连接与该房间的绑定。"""
        for conn in list(self._groups.get(room_id, {}).values()):
            self.unbind(conn, room_id)

    def is_bound(self, conn: Connection, room_id: str) -> bool:
        return room_id in self._bindings.get(conn.id, ())

    def rooms_of(self, conn: Connection) -> list[str]:
        return sorted(self._bindings.get(conn.id, ()))

    def connections_in(self, room_id: str) -> list[Connection]:
        return list(self._groups.get(room_id, {}).values())

    def connections_of_user(self, user_id: str) -> list[Connection]:
        return list(self._users.get(user_id, {}).values())

    def online_users(self, room_id: str) -> list[OnlineUser]:
        """房间当前在线用户名册（同一用户多连接只计一次）。"""
        seen: dict[str, OnlineUser] = {}
        for conn in self.connections_in(room_id):
            seen.setdefault(
                conn.user_id,
                OnlineUser(user_id=conn.user_id, username=conn.display_name),
            )
        return list(seen.values())

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self._connections)

    # ── 推送 ─────────────────────────────────────────────────────────

    async def emit(self, conn: Connection, event: str, data: Any = None) -> None:
        """向单个连接推送事件。推送失败只记录日志（尽力而为）。"""
        try:
            await conn.send(event, data)
        except Exception as e:
            logger.warning("推送失败 | conn=%s | event=%s | %s", conn.id, event, e)

    async def emit_to_user(self, user_id: str, event: str, data: Any = None) -> None:
        """向用户的全部在线连接推送事件（用户离线时为空操作）。"""
        await self._fan_out(self.connections_of_user(user_id), event, data)

    async def broadcast(
        self,
        room_id: str,
        event: str,
        data: Any = None,
        exclude: Connection | None = None,
        exclude_user: str | None = None,
    ) -> None:
        """向房间内所有已绑定连接广播事件。

        ``exclude`` 排除单个连接（如发送者），``exclude_user`` 排除该用户的全部连接。
        """
        targets = [
            conn for conn in self.connections_in(room_id)
            if (exclude is None or conn.id != exclude.id)
            and (exclude_user is None or conn.user_id != exclude_user)
        ]
        await self._fan_out(targets, event, data)

    async def _fan_out(self, targets: list[Connection], event: str, data: Any) -> None:
        if not targets:
            return
        payload = encode_payload(data)
        results = await asyncio.gather(
            *(conn.send(event, payload) for conn in targets),
            return_exceptions=True,
        )
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败 | conn=%s | event=%s | %s", conn.id, event, result)

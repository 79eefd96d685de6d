"""
app.services.session_router
~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话路由 —— 为每个入站事件确定连接要操作的房间，并校验成员权限。

一个连接可以同时绑定多个房间，路由从不在多个房间之间猜测：

- 事件显式携带 ``room_id`` 时总是以它为准；
- 未携带时，仅当连接恰好绑定了一个房间才使用该房间；
- 未绑定任何房间 → ``NoActiveRoom``；绑定多个 → ``AmbiguousRoom``。
"""
from __future__ import annotations

from app.core.exceptions import AmbiguousRoom, NoActiveRoom, RoomNotFound, Unauthorized
from app.core.logging import get_logger
from app.schemas.chat import JoinConfirmationData
from app.services.connection import Connection
from app.services.connection_hub import ConnectionHub
from app.services.room_directory import RoomDirectory

logger = get_logger(__name__)


class SessionRouter:
    """连接 → 房间的意图解析与鉴权。"""

    def __init__(self, directory: RoomDirectory, hub: ConnectionHub) -> None:
        self.directory = directory
        self.hub = hub

    def resolve(self, conn: Connection, room_id: str | None) -> str:
        """解析事件的目标房间。

        Raises:
            NoActiveRoom: 未指定房间且连接未绑定任何房间。
            AmbiguousRoom: 未指定房间且连接绑定了多个房间。
        """
        if room_id and room_id.strip():
            return room_id.strip()

        bound = self.hub.rooms_of(conn)
        if len(bound) == 1:
            return bound[0]
        if not bound:
            raise NoActiveRoom()
        raise AmbiguousRoom()

    def authorize(self, conn: Connection, room_id: str) -> str:
        """校验连接用户是房间成员；成员的连接若尚未绑定则顺带绑定。

        Raises:
            Unauthorized: 用户不在目录缓存的成员列表中。
        """
        if not self.directory.is_member(room_id, conn.user_id):
            logger.warning("非成员操作被拒绝 | user=%s | room=%s", conn.user_id, room_id)
            raise Unauthorized("你无权在此聊天中执行该操作")
        if not self.hub.is_bound(conn, room_id):
            self.hub.bind(conn, room_id)
        return room_id

    def route(self, conn: Connection, room_id: str | None) -> str:
        """解析并鉴权，返回最终的目标房间 ID。"""
        return self.authorize(conn, self.resolve(conn, room_id))

    async def join_chat(self, conn: Connection, room_id: str) -> JoinConfirmationData:
        """加入聊天：绑定连接，回送在线名册，并通知房间内其他连接。

        Raises:
            RoomNotFound: 目录中没有该房间。
            Unauthorized: 用户不是房间成员。
        """
        if self.directory.get(room_id) is None:
            raise RoomNotFound()
        if not self.directory.is_member(room_id, conn.user_id):
            logger.warning("非成员尝试加入 | user=%s | room=%s", conn.user_id, room_id)
            raise Unauthorized("你无权加入此聊天")

        self.hub.bind(conn, room_id)
        logger.info("✅ 用户加入聊天 | user=%s | room=%s", conn.user_id, room_id)

        confirmation = JoinConfirmationData(
            room_id=room_id, users=self.hub.online_users(room_id),
        )
        await self.hub.emit(conn, "joinConfirmation", confirmation)
        await self.hub.broadcast(
            room_id,
            "userJoined",
            {"user_id": conn.user_id, "username": conn.display_name, "room_id": room_id},
            exclude=conn,
        )
        return confirmation

"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

连接断开时，通知该连接所在的每个房间“用户已离开”。

断开连接不同于 ``leaveChat``：持久化成员关系保持不变，用户重连后会在初次
同步时被重新绑定。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.services.connection import Connection
from app.services.connection_hub import ConnectionHub

logger = get_logger(__name__)


class PresenceHandler:
    def __init__(self, hub: ConnectionHub) -> None:
        self.hub = hub

    async def on_disconnect(self, conn: Connection) -> list[str]:
        """注销连接并向其绑定过的房间广播 ``userLeft``。

        Returns:
            被通知的房间 ID 列表。
        """
        rooms = self.hub.unregister(conn)
        for room_id in rooms:
            await self.hub.broadcast(
                room_id,
                "userLeft",
                {"user_id": conn.user_id, "username": conn.display_name, "room_id": room_id},
            )
        logger.info(
            "❌ 连接已断开 | user=%s | 通知房间数=%d | 在线连接: %d",
            conn.user_id, len(rooms), self.hub.online_count,
        )
        return rooms

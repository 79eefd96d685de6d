"""
app.services.room_directory
~~~~~~~~~~~~~~~~~~~~~~~~~~~

进程内的房间成员缓存，镜像持久化的 ``rooms`` 集合。

热路径上（发消息、编辑、删除、输入提示、加入）的成员鉴权只查本缓存。
持久化存储才是权威数据源，因此凡是持久化成员发生变化的地方
（创建、离开、删除、连接初次同步），都必须先同步刷新本缓存，再做任何依赖
新状态的广播。缓存只在事件循环内被修改，不需要加锁。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoomEntry:
    """目录条目：房间成员与创建者。"""

    members: tuple[str, ...]
    creator_id: str


class RoomDirectory:
    """房间成员缓存。"""

    def __init__(self) -> None:
        self._entries: dict[str, RoomEntry] = {}

    def get(self, room_id: str) -> RoomEntry | None:
        return self._entries.get(room_id)

    def put(self, room_id: str, entry: RoomEntry) -> None:
        self._entries[room_id] = entry

    def remove(self, room_id: str) -> None:
        if self._entries.pop(room_id, None) is not None:
            logger.debug("目录条目已移除 | room=%s", room_id)

    def is_member(self, room_id: str, user_id: str) -> bool:
        entry = self._entries.get(room_id)
        return entry is not None and user_id in entry.members

    def put_record(self, room: dict[str, Any]) -> RoomEntry:
        """用持久化的房间文档刷新目录条目。"""
        entry = RoomEntry(
            members=tuple(room["members"]),
            creator_id=room["creator_id"],
        )
        self.put(room["room_id"], entry)
        return entry

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

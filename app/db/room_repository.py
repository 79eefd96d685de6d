"""
app.db.room_repository
~~~~~~~~~~~~~~~~~~~~~~

房间持久化仓库 —— 封装 MongoDB ``rooms`` 集合。

``room_id`` 上建有唯一索引：同一对用户最多只有一个房间，并发创建时
后到的插入会得到 ``DuplicateKeyError``，由调用方转为复用已有房间。
成员增删均为单文档原子操作（``$addToSet`` / ``$pull``）。
"""
from __future__ import annotations

from datetime import datetime
from typing import TypedDict

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.logging import get_logger

logger = get_logger(__name__)

_COLLECTION_NAME = "rooms"
_PROJECTION = {"_id": 0}


class RoomDocument(TypedDict):
    """代表 MongoDB 中 rooms 集合的单条记录"""
    room_id: str
    members: list[str]
    creator_id: str
    company_id: str | None
    is_one_on_one: bool
    created_at: datetime


class RoomRepository:
    """房间持久化仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._collection.create_index("room_id", unique=True, name="uniq_room_id")
        await self._collection.create_index("members", name="idx_members")
        self._indexes_created = True
        logger.debug("rooms 索引已就绪")

    async def find_room(self, room_id: str) -> RoomDocument | None:
        """按 ID 查找一对一房间。"""
        await self._ensure_indexes()
        return await self._collection.find_one(
            {"room_id": room_id, "is_one_on_one": True}, _PROJECTION,
        )

    async def find_rooms_for_user(self, user_id: str) -> list[RoomDocument]:
        """列出用户所在的全部一对一房间。"""
        await self._ensure_indexes()
        cursor = self._collection.find(
            {"members": user_id, "is_one_on_one": True}, _PROJECTION,
        )
        return await cursor.to_list(length=None)

    async def insert_room(self, room: RoomDocument) -> bool:
        """插入新房间。

        Returns:
            ``True`` 表示本次插入成功；``False`` 表示同 ID 房间已存在。
        """
        await self._ensure_indexes()
        try:
            # insert_one 会原地写入 _id，传副本避免污染调用方的数据
            await self._collection.insert_one(dict(room))
        except DuplicateKeyError:
            logger.info("房间已存在，放弃插入 | room=%s", room["room_id"])
            return False
        return True

    async def add_members(self, room_id: str, members: list[str]) -> RoomDocument | None:
        """原子地补齐成员，返回更新后的房间（房间不存在时为 ``None``）。"""
        await self._ensure_indexes()
        return await self._collection.find_one_and_update(
            {"room_id": room_id, "is_one_on_one": True},
            {"$addToSet": {"members": {"$each": members}}},
            projection=_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )

    async def pull_member(self, room_id: str, user_id: str) -> RoomDocument | None:
        """原子地移除成员，返回更新后的房间（房间不存在时为 ``None``）。"""
        await self._ensure_indexes()
        return await self._collection.find_one_and_update(
            {"room_id": room_id, "is_one_on_one": True},
            {"$pull": {"members": user_id}},
            projection=_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )

    async def delete_room(self, room_id: str) -> bool:
        await self._ensure_indexes()
        result = await self._collection.delete_one({"room_id": room_id})
        return result.deleted_count > 0

"""
app.db.message_repository
~~~~~~~~~~~~~~~~~~~~~~~~~

封装 MongoDB ``messages`` 集合的增删改查。

每条消息一个文档（扁平设计），避免 16MB 文档限制且便于分页查询。
所有按 ID 的操作都同时限定 ``room_id``，消息不会跨房间被修改。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TypedDict

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.core.logging import get_logger

logger = get_logger(__name__)

_COLLECTION_NAME = "messages"


class MessageDocument(TypedDict, total=False):
    """代表 MongoDB 中 messages 集合的单条记录"""
    _id: ObjectId
    author_id: str
    author_name: str
    body: str
    room_id: str
    company_id: str | None
    created_at: datetime
    updated_at: datetime


class MessageRepository:
    """消息持久化仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        # 复合索引：按房间分区 + 按时间排序
        await self._collection.create_index(
            [("room_id", 1), ("created_at", 1)],
            name="idx_room_time",
        )
        self._indexes_created = True
        logger.debug("messages 索引已就绪")

    async def insert_message(
        self,
        room_id: str,
        author_id: str,
        author_name: str,
        body: str,
        company_id: str | None = None,
    ) -> MessageDocument:
        """保存一条消息，返回带 ``_id`` 的持久化文档。"""
        await self._ensure_indexes()
        doc: MessageDocument = {
            "_id": ObjectId(),
            "author_id": author_id,
            "author_name": author_name,
            "body": body,
            "room_id": room_id,
            "company_id": company_id,
            "created_at": datetime.now(timezone.utc),
        }
        await self._collection.insert_one(doc)
        return doc

    async def find_message(self, message_id: str, room_id: str) -> MessageDocument | None:
        await self._ensure_indexes()
        return await self._collection.find_one(
            {"_id": ObjectId(message_id), "room_id": room_id},
        )

    async def update_body(
        self, message_id: str, room_id: str, body: str,
    ) -> MessageDocument | None:
        """更新正文并写入 ``updated_at``，返回更新后的文档。"""
        await self._ensure_indexes()
        return await self._collection.find_one_and_update(
            {"_id": ObjectId(message_id), "room_id": room_id},
            {"$set": {"body": body, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )

    async def delete_message(self, message_id: str, room_id: str) -> bool:
        await self._ensure_indexes()
        result = await self._collection.delete_one(
            {"_id": ObjectId(message_id), "room_id": room_id},
        )
        return result.deleted_count > 0

    async def delete_room_messages(self, room_id: str) -> int:
        """删除房间内全部消息，返回删除条数。"""
        await self._ensure_indexes()
        result = await self._collection.delete_many({"room_id": room_id})
        return result.deleted_count

    async def get_room_messages(
        self,
        room_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> list[MessageDocument]:
        """获取指定房间的消息（分页，按时间正序）。

        Args:
            room_id: 房间唯一标识。
            skip: 跳过条数（分页偏移）。
            limit: 每页最大条数。
        """
        await self._ensure_indexes()
        cursor = (
            self._collection
            .find({"room_id": room_id})
            .sort("created_at", 1)
            .skip(skip)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def count_messages(self, room_id: str) -> int:
        """获取指定房间的消息总数。"""
        await self._ensure_indexes()
        return await self._collection.count_documents({"room_id": room_id})

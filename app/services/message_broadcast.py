"""
app.services.message_broadcast
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息广播引擎 —— 校验、持久化并向房间广播发送 / 编辑 / 删除 / 输入提示事件。

持久化事件（发送、编辑、删除）一律先落库再广播，并且回送给发送者本人，
客户端以持久化后的副本为准。输入提示不落库，且不回送给发送者。
"""
from __future__ import annotations

from bson import ObjectId

from app.core.exceptions import (
    AmbiguousRoom,
    InvalidId,
    MessageNotFound,
    NoActiveRoom,
    Unauthorized,
    ValidationError,
)
from app.core.logging import get_logger
from app.db.message_repository import MessageRepository
from app.schemas.chat import MessageData
from app.services.connection import Connection
from app.services.connection_hub import ConnectionHub
from app.services.session_router import SessionRouter

logger = get_logger(__name__)


def _clean_body(body: str | None, message: str) -> str:
    text = (body or "").strip()
    if not text:
        raise ValidationError(message)
    return text


def _check_message_id(message_id: str | None) -> str:
    if not message_id or not ObjectId.is_valid(message_id):
        raise InvalidId()
    return message_id


class MessageBroadcaster:
    """消息广播引擎。"""

    def __init__(
        self,
        router: SessionRouter,
        hub: ConnectionHub,
        messages: MessageRepository,
    ) -> None:
        self.router = router
        self.hub = hub
        self.messages = messages

    async def send(
        self, conn: Connection, body: str | None, room_id: str | None = None,
    ) -> MessageData:
        """发送消息：落库后广播给房间内全部连接（含发送者）。"""
        text = _clean_body(body, "消息内容不能为空")
        target = self.router.route(conn, room_id)

        doc = await self.messages.insert_message(
            room_id=target,
            author_id=conn.user_id,
            author_name=conn.display_name,
            body=text,
            company_id=conn.claim.company_id,
        )
        message = MessageData.from_document(doc)
        logger.info("💾 消息已保存 | id=%s | room=%s", message.id, target)

        await self.hub.broadcast(target, "newMessage", message)
        return message

    async def edit(
        self,
        conn: Connection,
        message_id: str | None,
        new_body: str | None,
        room_id: str | None = None,
    ) -> MessageData:
        """编辑消息：仅原作者可编辑，按存储的 ``author_id`` 判断而非展示名。"""
        message_id = _check_message_id(message_id)
        text = _clean_body(new_body, "新的消息内容不能为空")
        target = self.router.route(conn, room_id)

        existing = await self.messages.find_message(message_id, target)
        if existing is None:
            raise MessageNotFound()
        if existing["author_id"] != conn.user_id:
            logger.warning(
                "非作者编辑被拒绝 | user=%s | message=%s", conn.user_id, message_id,
            )
            raise Unauthorized("你无权编辑这条消息")

        updated = await self.messages.update_body(message_id, target, text)
        if updated is None:
            raise MessageNotFound()
        message = MessageData.from_document(updated)
        logger.info("✏️ 消息已更新 | id=%s | room=%s", message_id, target)

        await self.hub.broadcast(target, "messageUpdated", message)
        return message

    async def delete(
        self, conn: Connection, message_id: str | None, room_id: str | None = None,
    ) -> str:
        """删除消息：仅原作者可删除，广播只携带消息 ID。"""
        message_id = _check_message_id(message_id)
        target = self.router.route(conn, room_id)

        existing = await self.messages.find_message(message_id, target)
        if existing is None:
            raise MessageNotFound()
        if existing["author_id"] != conn.user_id:
            logger.warning(
                "非作者删除被拒绝 | user=%s | message=%s", conn.user_id, message_id,
            )
            raise Unauthorized("你无权删除这条消息")

        if not await self.messages.delete_message(message_id, target):
            raise MessageNotFound()
        logger.info("🗑️ 消息已删除 | id=%s | room=%s", message_id, target)

        await self.hub.broadcast(
            target, "messageDeleted", {"message_id": message_id},
        )
        return message_id

    async def typing_start(self, conn: Connection, room_id: str | None = None) -> None:
        target = self._typing_target(conn, room_id)
        if target is None:
            return
        await self.hub.broadcast(
            target,
            "userTyping",
            {"user_id": conn.user_id, "username": conn.display_name, "room_id": target},
            exclude=conn,
        )

    async def typing_stop(self, conn: Connection, room_id: str | None = None) -> None:
        target = self._typing_target(conn, room_id)
        if target is None:
            return
        await self.hub.broadcast(
            target,
            "userStoppedTyping",
            {"user_id": conn.user_id, "room_id": target},
            exclude=conn,
        )

    def _typing_target(self, conn: Connection, room_id: str | None) -> str | None:
        # 解析不出房间时静默忽略，非成员仍然报错
        try:
            target = self.router.resolve(conn, room_id)
        except (NoActiveRoom, AmbiguousRoom):
            return None
        return self.router.authorize(conn, target)

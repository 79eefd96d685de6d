"""
app.services.room_lifecycle
~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间生命周期管理 —— 创建 / 复用、离开、删除一对一房间，以及连接的初次同步。

房间 ID 由排序后的用户对唯一确定（``room_<较小ID>_<较大ID>``），
同一对用户最多只有一个房间。双方并发 ``startChat`` 时，持久化层的唯一索引
保证只有一次插入成功，另一方复用同一房间。

每次持久化成员发生变化后，都先刷新 ``RoomDirectory`` 再做任何广播。
"""
from __future__ import annotations

from datetime import datetime, timezone

from app.core.exceptions import RoomNotFound, Unauthorized, UserNotFound, ValidationError
from app.core.logging import get_logger
from app.db.message_repository import MessageRepository
from app.db.room_repository import RoomDocument, RoomRepository
from app.db.user_repository import UserRepository
from app.schemas.chat import ChatCreatedData, MessageData
from app.services.connection import Connection
from app.services.connection_hub import ConnectionHub
from app.services.room_directory import RoomDirectory

logger = get_logger(__name__)

SYSTEM_USER_ID = "system"
SYSTEM_USER_NAME = "System"


def make_room_id(user_a: str, user_b: str) -> str:
    """根据用户对生成确定性的房间 ID，与参数顺序无关。"""
    first, second = sorted((user_a, user_b))
    return f"room_{first}_{second}"


def _require_room_id(room_id: str | None) -> str:
    if not room_id or not room_id.strip():
        raise ValidationError("必须提供聊天 ID")
    return room_id.strip()


def _other_member(room: RoomDocument, user_id: str) -> str:
    return next((m for m in room["members"] if m != user_id), user_id)


class RoomLifecycleManager:
    """一对一房间生命周期管理器。"""

    def __init__(
        self,
        directory: RoomDirectory,
        hub: ConnectionHub,
        rooms: RoomRepository,
        messages: MessageRepository,
        users: UserRepository,
    ) -> None:
        self.directory = directory
        self.hub = hub
        self.rooms = rooms
        self.messages = messages
        self.users = users

    # ── 初次同步 ─────────────────────────────────────────────────────

    async def sync_connection(self, conn: Connection) -> list[str]:
        """连接建立后加载用户的全部房间：刷新目录、静默绑定并逐个推送 ``chatCreated``。"""
        rooms = await self.rooms.find_rooms_for_user(conn.user_id)
        for room in rooms:
            room_id = room["room_id"]
            self.directory.put_record(room)
            self.hub.bind(conn, room_id)
            await self.hub.emit(
                conn,
                "chatCreated",
                ChatCreatedData(
                    room_id=room_id,
                    other_user_id=_other_member(room, conn.user_id),
                    members=room["members"],
                    creator_id=room["creator_id"],
                ),
            )
        logger.info("📤 初次同步完成 | user=%s | 房间数=%d", conn.user_id, len(rooms))
        return [room["room_id"] for room in rooms]

    # ── 创建 / 复用 ──────────────────────────────────────────────────

    async def start_chat(self, conn: Connection, other_user_id: str | None) -> ChatCreatedData:
        """与另一用户开始一对一聊天（幂等）。

        Raises:
            ValidationError: 未提供对方 ID，或对方是自己。
            UserNotFound: 对方不存在或角色不允许聊天。
        """
        other = (other_user_id or "").strip()
        if not other:
            raise ValidationError("必须提供对方用户 ID")
        requester = conn.claim
        if other == requester.user_id:
            raise ValidationError("不能和自己发起聊天")

        counterpart = await self.users.find_chat_counterpart(other)
        if counterpart is None:
            logger.warning("对方用户无效 | requester=%s | other=%s", requester.user_id, other)
            raise UserNotFound()

        room_id = make_room_id(requester.user_id, other)
        room = await self.rooms.find_room(room_id)
        created = False
        if room is None:
            new_room: RoomDocument = {
                "room_id": room_id,
                "members": sorted((requester.user_id, other)),
                "creator_id": requester.user_id,
                "company_id": requester.company_id,
                "is_one_on_one": True,
                "created_at": datetime.now(timezone.utc),
            }
            created = await self.rooms.insert_room(new_room)
            if created:
                room = new_room

        if not created:
            # 复用已有房间（含并发创建落败的情况），补齐曾离开的一方
            room = await self.rooms.add_members(room_id, [requester.user_id, other])
            if room is None:
                raise RoomNotFound()

        self.directory.put_record(room)
        self.hub.bind(conn, room_id)
        for user_id in (requester.user_id, other):
            for peer in self.hub.connections_of_user(user_id):
                self.hub.bind(peer, room_id)

        logger.info(
            "✅ %s | room=%s | members=%s",
            "聊天已创建" if created else "复用已有聊天", room_id, room["members"],
        )

        created_for_requester = ChatCreatedData(
            room_id=room_id,
            other_user_id=other,
            members=room["members"],
            creator_id=room["creator_id"],
        )
        await self.hub.emit_to_user(requester.user_id, "chatCreated", created_for_requester)
        await self.hub.emit_to_user(
            other,
            "chatCreated",
            created_for_requester.model_copy(update={"other_user_id": requester.user_id}),
        )

        if created:
            counterpart_name = counterpart.get("firstName") or "Anonymous"
            await self._send_welcome(room, requester.display_name, counterpart_name)
        return created_for_requester

    async def _send_welcome(self, room: RoomDocument, first: str, second: str) -> None:
        doc = await self.messages.insert_message(
            room_id=room["room_id"],
            author_id=SYSTEM_USER_ID,
            author_name=SYSTEM_USER_NAME,
            body=f"{first} 与 {second} 的私聊已开始",
            company_id=room.get("company_id"),
        )
        await self.hub.broadcast(room["room_id"], "newMessage", MessageData.from_document(doc))

    # ── 离开 ─────────────────────────────────────────────────────────

    async def leave_room(self, conn: Connection, room_id: str | None) -> None:
        """离开聊天：移除持久化成员，成员为空时删除房间（保留消息）。

        Raises:
            RoomNotFound: 不存在该一对一房间。
            Unauthorized: 用户不是房间成员。
        """
        room_id = _require_room_id(room_id)
        user_id = conn.user_id

        room = await self.rooms.find_room(room_id)
        if room is None:
            raise RoomNotFound()
        if user_id not in room["members"]:
            logger.warning("非成员尝试离开 | user=%s | room=%s", user_id, room_id)
            raise Unauthorized("你不是该聊天的成员")

        updated = await self.rooms.pull_member(room_id, user_id)
        if updated is None:
            self.directory.remove(room_id)
            raise RoomNotFound()

        # 每次写库成功后立即刷新目录，后续写库失败也不会留下过期的成员
        if updated["members"]:
            self.directory.put_record(updated)
        else:
            self.directory.remove(room_id)
            await self.rooms.delete_room(room_id)
            logger.info("🗑️ 空聊天已删除 | room=%s", room_id)

        for peer in self.hub.connections_of_user(user_id):
            self.hub.unbind(peer, room_id)
        logger.info("🚪 用户离开聊天 | user=%s | room=%s", user_id, room_id)

        await self.hub.emit(
            conn,
            "chatLeft",
            {
                "success": True,
                "message": "已离开聊天",
                "data": {"room_id": room_id, "user_id": user_id},
            },
        )
        await self.hub.broadcast(
            room_id,
            "userLeftChat",
            {"user_id": user_id, "username": conn.display_name, "room_id": room_id},
        )

    # ── 删除 ─────────────────────────────────────────────────────────

    async def delete_room(self, conn: Connection, room_id: str | None) -> int:
        """删除聊天及其全部消息。

        Returns:
            被级联删除的消息条数。

        Raises:
            RoomNotFound: 不存在该一对一房间。
            Unauthorized: 公司不匹配或用户不是房间成员。
        """
        room_id = _require_room_id(room_id)
        claim = conn.claim

        room = await self.rooms.find_room(room_id)
        if room is None:
            raise RoomNotFound()
        if room.get("company_id") != claim.company_id or claim.user_id not in room["members"]:
            logger.warning("删除聊天被拒绝 | user=%s | room=%s", claim.user_id, room_id)
            raise Unauthorized("你无权删除此聊天")

        deleted = await self.rooms.delete_room(room_id)
        self.directory.remove(room_id)
        if not deleted:
            raise RoomNotFound()
        removed = await self.messages.delete_room_messages(room_id)
        logger.info(
            "🗑️ 聊天已删除 | room=%s | by=%s | 级联删除消息 %d 条",
            room_id, claim.user_id, removed,
        )

        await self.hub.broadcast(
            room_id,
            "chatDeleted",
            {"room_id": room_id, "message": "该聊天已被删除"},
            exclude_user=claim.user_id,
        )
        await self.hub.emit_to_user(
            claim.user_id, "chatDeleted", {"room_id": room_id, "message": "你已成功删除该聊天"},
        )
        await self.hub.broadcast(
            room_id,
            "userLeftChat",
            {"user_id": claim.user_id, "username": claim.display_name, "room_id": room_id},
            exclude_user=claim.user_id,
        )
        self.hub.drop_room(room_id)
        return removed

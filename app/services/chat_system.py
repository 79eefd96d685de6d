"""
app.services.chat_system
~~~~~~~~~~~~~~~~~~~~~~~~

聊天系统 —— 组装目录、连接中心、路由、广播引擎与生命周期管理，
并提供入站事件分发表与统一的异常边界。

在 FastAPI lifespan 中初始化并挂载于 ``app.state.chat_system``。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ChatError, ServerError, ValidationError
from app.core.logging import get_logger
from app.db.message_repository import MessageRepository
from app.db.room_repository import RoomRepository
from app.db.user_repository import UserRepository
from app.schemas.events import InboundEvent, inbound_event_adapter
from app.services.connection import Connection
from app.services.connection_hub import ConnectionHub
from app.services.message_broadcast import MessageBroadcaster
from app.services.presence import PresenceHandler
from app.services.room_directory import RoomDirectory
from app.services.room_lifecycle import RoomLifecycleManager
from app.services.session_router import SessionRouter

logger = get_logger(__name__)

EventHandler = Callable[[Connection, Any], Awaitable[Any]]


class ChatSystem:
    """聊天系统（每个进程一个实例）。

    - ``connect(conn)``            → 登记连接并完成初次同步
    - ``parse_event(raw)``         → 将原始帧校验为强类型事件
    - ``dispatch(conn, event)``    → 按事件名分发，异常转为 ``errorMessage``
    - ``disconnect(conn)``         → 注销连接并通知其所在房间

    Attributes:
        rooms: 房间持久化仓库。
        messages: 消息持久化仓库。
        users: 用户目录仓库。
        directory: 房间成员缓存。
        hub: 在线连接中心。
    """

    def __init__(
        self,
        rooms: RoomRepository,
        messages: MessageRepository,
        users: UserRepository,
        directory: RoomDirectory | None = None,
        hub: ConnectionHub | None = None,
    ) -> None:
        self.rooms = rooms
        self.messages = messages
        self.users = users
        self.directory = directory or RoomDirectory()
        self.hub = hub or ConnectionHub()

        self.router = SessionRouter(self.directory, self.hub)
        self.broadcaster = MessageBroadcaster(self.router, self.hub, messages)
        self.lifecycle = RoomLifecycleManager(
            self.directory, self.hub, rooms, messages, users,
        )
        self.presence = PresenceHandler(self.hub)

        self._handlers: dict[str, EventHandler] = {
            "sendMessage": lambda conn, data: self.broadcaster.send(
                conn, data.body, data.room_id,
            ),
            "editMessage": lambda conn, data: self.broadcaster.edit(
                conn, data.message_id, data.new_body, data.room_id,
            ),
            "deleteMessage": lambda conn, data: self.broadcaster.delete(
                conn, data.message_id, data.room_id,
            ),
            "typing": lambda conn, data: self.broadcaster.typing_start(conn, data.room_id),
            "stopTyping": lambda conn, data: self.broadcaster.typing_stop(conn, data.room_id),
            "startChat": lambda conn, data: self.lifecycle.start_chat(conn, data.other_user_id),
            "joinChat": lambda conn, data: self.router.join_chat(conn, data.room_id),
            "leaveChat": lambda conn, data: self.lifecycle.leave_room(conn, data.room_id),
            "deleteChat": lambda conn, data: self.lifecycle.delete_room(conn, data.room_id),
        }

    @classmethod
    def from_database(cls, db: AsyncIOMotorDatabase) -> ChatSystem:
        """基于 MongoDB 数据库实例构建聊天系统。"""
        return cls(
            rooms=RoomRepository(db),
            messages=MessageRepository(db),
            users=UserRepository(db),
        )

    # ── 连接生命周期 ─────────────────────────────────────────────────

    async def connect(self, conn: Connection) -> None:
        self.hub.register(conn)
        logger.info(
            "✅ 连接已建立 | user=%s | 在线连接: %d", conn.user_id, self.hub.online_count,
        )
        try:
            await self.lifecycle.sync_connection(conn)
        except Exception as e:
            logger.error("初次同步失败 | user=%s | %s", conn.user_id, e, exc_info=True)
            await self.hub.emit(conn, "errorMessage", "加载聊天列表失败，请稍后重试")

    async def disconnect(self, conn: Connection) -> None:
        await self.presence.on_disconnect(conn)

    # ── 事件处理 ─────────────────────────────────────────────────────

    def parse_event(self, raw: str | bytes) -> InboundEvent:
        """将原始帧校验为入站事件。

        Raises:
            ValidationError: 帧不是合法的事件 JSON。
        """
        try:
            return inbound_event_adapter.validate_json(raw)
        except PydanticValidationError as e:
            logger.debug("入站帧校验失败: %s", e)
            raise ValidationError("无法识别的事件格式") from e

    async def dispatch(self, conn: Connection, event: InboundEvent) -> Any:
        """执行事件处理器。

        所有异常都在这里被吸收：业务异常把其消息回送给发起连接，其他异常
        记录完整日志后回送通用错误，绝不广播给房间内其他成员。
        """
        handler = self._handlers[event.event]
        try:
            return await handler(conn, event.data)
        except ChatError as e:
            logger.info(
                "事件被拒绝 | event=%s | user=%s | %s: %s",
                event.event, conn.user_id, type(e).__name__, e.message,
            )
            await self.report_error(conn, e)
        except Exception as e:
            logger.error(
                "事件处理异常 | event=%s | user=%s | %s",
                event.event, conn.user_id, e, exc_info=True,
            )
            await self.report_error(conn, ServerError())
        return None

    async def report_error(self, conn: Connection, error: ChatError) -> None:
        await self.hub.emit(conn, "errorMessage", error.message)

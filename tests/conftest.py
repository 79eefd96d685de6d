"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存仓库替换 MongoDB，用 ``AsyncMock`` 替换 WebSocket，
使单元测试可在无数据库、无网络环境下快速运行。
"""
from __future__ import annotations

import asyncio
import copy
import os
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-enough-length")
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

import jwt  # noqa: E402
from bson import ObjectId  # noqa: E402
from fastapi import WebSocket  # noqa: E402

from app.core.settings import settings  # noqa: E402
from app.schemas.chat import IdentityClaim  # noqa: E402
from app.services.chat_system import ChatSystem  # noqa: E402
from app.services.connection import Connection  # noqa: E402


# ── 内存仓库（与 MongoDB 仓库接口一致） ───────────────────────────────

class InMemoryRoomRepository:
    """``RoomRepository`` 的内存替身，``room_id`` 唯一。

    每个操作先让出一次事件循环，模拟真实的存储往返，便于测试并发交错。
    """

    def __init__(self) -> None:
        self.rooms: dict[str, dict[str, Any]] = {}

    async def find_room(self, room_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        room = self.rooms.get(room_id)
        if room is None or not room.get("is_one_on_one"):
            return None
        return copy.deepcopy(room)

    async def find_rooms_for_user(self, user_id: str) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        return [
            copy.deepcopy(room) for room in self.rooms.values()
            if user_id in room["members"] and room.get("is_one_on_one")
        ]

    async def insert_room(self, room: dict[str, Any]) -> bool:
        await asyncio.sleep(0)
        if room["room_id"] in self.rooms:
            return False
        self.rooms[room["room_id"]] = copy.deepcopy(room)
        return True

    async def add_members(self, room_id: str, members: list[str]) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        room = self.rooms.get(room_id)
        if room is None:
            return None
        for member in members:
            if member not in room["members"]:
                room["members"].append(member)
        return copy.deepcopy(room)

    async def pull_member(self, room_id: str, user_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        room = self.rooms.get(room_id)
        if room is None:
            return None
        room["members"] = [m for m in room["members"] if m != user_id]
        return copy.deepcopy(room)

    async def delete_room(self, room_id: str) -> bool:
        await asyncio.sleep(0)
        return self.rooms.pop(room_id, None) is not None


class InMemoryMessageRepository:
    """``MessageRepository`` 的内存替身。"""

    def __init__(self) -> None:
        self.messages: dict[str, dict[str, Any]] = {}

    async def insert_message(
        self,
        room_id: str,
        author_id: str,
        author_name: str,
        body: str,
        company_id: str | None = None,
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        doc = {
            "_id": ObjectId(),
            "author_id": author_id,
            "author_name": author_name,
            "body": body,
            "room_id": room_id,
            "company_id": company_id,
            "created_at": datetime.now(timezone.utc),
        }
        self.messages[str(doc["_id"])] = doc
        return copy.deepcopy(doc)

    async def find_message(self, message_id: str, room_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        doc = self.messages.get(message_id)
        if doc is None or doc["room_id"] != room_id:
            return None
        return copy.deepcopy(doc)

    async def update_body(self, message_id: str, room_id: str, body: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        doc = self.messages.get(message_id)
        if doc is None or doc["room_id"] != room_id:
            return None
        doc["body"] = body
        doc["updated_at"] = datetime.now(timezone.utc)
        return copy.deepcopy(doc)

    async def delete_message(self, message_id: str, room_id: str) -> bool:
        await asyncio.sleep(0)
        doc = self.messages.get(message_id)
        if doc is None or doc["room_id"] != room_id:
            return False
        del self.messages[message_id]
        return True

    async def delete_room_messages(self, room_id: str) -> int:
        await asyncio.sleep(0)
        doomed = [mid for mid, doc in self.messages.items() if doc["room_id"] == room_id]
        for mid in doomed:
            del self.messages[mid]
        return len(doomed)

    async def get_room_messages(
        self, room_id: str, skip: int = 0, limit: int = 100,
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        docs = sorted(
            (doc for doc in self.messages.values() if doc["room_id"] == room_id),
            key=lambda doc: doc["created_at"],
        )
        return copy.deepcopy(docs[skip:skip + limit])

    async def count_messages(self, room_id: str) -> int:
        await asyncio.sleep(0)
        return sum(1 for doc in self.messages.values() if doc["room_id"] == room_id)


class InMemoryUserRepository:
    """``UserRepository`` 的内存替身。"""

    def __init__(self, users: dict[str, dict[str, Any]] | None = None) -> None:
        self.users = users or {}

    async def find_chat_counterpart(self, user_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        user = self.users.get(user_id)
        if user is None or user.get("position") not in ("User", "Admin"):
            return None
        return user

    async def find_profile(self, user_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        return self.users.get(user_id)

    async def list_company_members(self, company_id: str) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        return [u for u in self.users.values() if u.get("companyId") == company_id]


DEFAULT_USERS: dict[str, dict[str, Any]] = {
    "u1": {"_id": "u1", "firstName": "Alice", "position": "User", "companyId": "c1",
           "email": "alice@example.com"},
    "u2": {"_id": "u2", "firstName": "Bob", "position": "User", "companyId": "c1",
           "email": "bob@example.com"},
    "u3": {"_id": "u3", "firstName": "Carol", "position": "Admin", "companyId": "c1",
           "email": "carol@example.com"},
    "u9": {"_id": "u9", "firstName": "Eve", "position": "Employee", "companyId": "c1",
           "email": "eve@example.com"},
}


# ── 辅助函数 ──────────────────────────────────────────────────────────

def make_conn(
    user_id: str,
    display_name: str | None = None,
    company_id: str | None = "c1",
    role: str = "User",
) -> Connection:
    """构造一个底层为 ``AsyncMock`` WebSocket 的连接。"""
    websocket = AsyncMock(spec=WebSocket)
    claim = IdentityClaim(
        user_id=user_id,
        role=role,
        company_id=company_id,
        display_name=display_name or DEFAULT_USERS.get(user_id, {}).get("firstName", "Anonymous"),
    )
    return Connection(websocket, claim)


def sent_events(conn: Connection) -> list[tuple[str, Any]]:
    """按顺序返回该连接收到的全部 ``(event, data)``。"""
    return [
        (call.args[0]["event"], call.args[0]["data"])
        for call in conn.websocket.send_json.call_args_list
    ]


def events_named(conn: Connection, name: str) -> list[Any]:
    return [data for event, data in sent_events(conn) if event == name]


def make_token(
    user_id: str = "u1",
    position: str = "User",
    company_id: str | None = "c1",
    first_name: str | None = "Alice",
    expires_in: timedelta = timedelta(hours=1),
    secret: str | None = None,
) -> str:
    payload: dict[str, Any] = {
        "userId": user_id,
        "position": position,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if company_id is not None:
        payload["companyId"] = company_id
    if first_name is not None:
        payload["firstName"] = first_name
    return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def room_repo() -> InMemoryRoomRepository:
    return InMemoryRoomRepository()


@pytest.fixture()
def message_repo() -> InMemoryMessageRepository:
    return InMemoryMessageRepository()


@pytest.fixture()
def user_repo() -> InMemoryUserRepository:
    return InMemoryUserRepository(copy.deepcopy(DEFAULT_USERS))


@pytest.fixture()
def system(
    room_repo: InMemoryRoomRepository,
    message_repo: InMemoryMessageRepository,
    user_repo: InMemoryUserRepository,
) -> ChatSystem:
    """基于内存仓库的完整聊天系统。"""
    return ChatSystem(rooms=room_repo, messages=message_repo, users=user_repo)

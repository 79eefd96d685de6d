"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

单个已鉴权 WebSocket 连接的封装。

出站帧统一为 ``{"event": <事件名>, "data": <负载>}``。
"""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel

from app.schemas.chat import IdentityClaim


def encode_payload(data: Any) -> Any:
    """将 Pydantic 模型（或其列表）转为可 JSON 序列化的结构。"""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [encode_payload(item) for item in data]
    return data


class Connection:
    """一条已鉴权的实时连接。

    Attributes:
        id: 连接唯一标识（进程内）。
        websocket: 底层 WebSocket。
        claim: 握手时验证得到的身份声明，连接生命周期内不变。
    """

    def __init__(
        self,
        websocket: WebSocket,
        claim: IdentityClaim,
        connection_id: str | None = None,
    ) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self.claim = claim

    @property
    def user_id(self) -> str:
        return self.claim.user_id

    @property
    def display_name(self) -> str:
        return self.claim.display_name

    async def send(self, event: str, data: Any = None) -> None:
        """向本连接发送一个事件帧。"""
        await self.websocket.send_json({"event": event, "data": encode_payload(data)})

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r})"

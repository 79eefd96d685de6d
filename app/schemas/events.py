"""
app.schemas.events
~~~~~~~~~~~~~~~~~~

WebSocket 入站事件模型。

每个入站帧形如 ``{"event": "<名称>", "data": {...}}``，按 ``event`` 字段区分为
不同的强类型事件，在进入分发表之前完成结构校验。
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class RoomTarget(BaseModel):
    """可选携带目标房间的负载。"""

    room_id: str | None = None


class SendMessagePayload(RoomTarget):
    body: str


class EditMessagePayload(RoomTarget):
    message_id: str
    new_body: str


class DeleteMessagePayload(RoomTarget):
    message_id: str


class StartChatPayload(BaseModel):
    other_user_id: str


class RoomPayload(BaseModel):
    room_id: str


class SendMessageEvent(BaseModel):
    event: Literal["sendMessage"]
    data: SendMessagePayload


class EditMessageEvent(BaseModel):
    event: Literal["editMessage"]
    data: EditMessagePayload


class DeleteMessageEvent(BaseModel):
    event: Literal["deleteMessage"]
    data: DeleteMessagePayload


class TypingEvent(BaseModel):
    event: Literal["typing"]
    data: RoomTarget = Field(default_factory=RoomTarget)


class StopTypingEvent(BaseModel):
    event: Literal["stopTyping"]
    data: RoomTarget = Field(default_factory=RoomTarget)


class StartChatEvent(BaseModel):
    event: Literal["startChat"]
    data: StartChatPayload


class JoinChatEvent(BaseModel):
    event: Literal["joinChat"]
    data: RoomPayload


class LeaveChatEvent(BaseModel):
    event: Literal["leaveChat"]
    data: RoomPayload


class DeleteChatEvent(BaseModel):
    event: Literal["deleteChat"]
    data: RoomPayload


InboundEvent = Annotated[
    Union[
        SendMessageEvent,
        EditMessageEvent,
        DeleteMessageEvent,
        TypingEvent,
        StopTypingEvent,
        StartChatEvent,
        JoinChatEvent,
        LeaveChatEvent,
        DeleteChatEvent,
    ],
    Field(discriminator="event"),
]

inbound_event_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)

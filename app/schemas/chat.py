"""
app.schemas.chat
~~~~~~~~~~~~~~~~

聊天相关的 Pydantic 模型 —— 身份声明、出站事件负载与 HTTP 响应数据。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IdentityClaim(BaseModel):
    """握手阶段验证通过后挂在连接上的身份声明，连接生命周期内不可变。"""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="用户 ID")
    role: str = Field(..., description="角色，如 User / Admin / Employee")
    company_id: str | None = Field(default=None, description="所属公司 ID")
    display_name: str = Field(default="Anonymous", description="展示名称")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class MessageData(BaseModel):
    """消息的出站形式（持久化后的权威副本）。"""

    id: str = Field(..., description="消息 ID")
    author_id: str = Field(..., description="作者用户 ID")
    author_name: str = Field(..., description="作者展示名称")
    body: str = Field(..., description="消息正文")
    room_id: str = Field(..., description="所属房间 ID")
    company_id: str | None = Field(default=None, description="所属公司 ID")
    created_at: str = Field(..., description="创建时间（ISO 格式）")
    updated_at: str | None = Field(default=None, description="最后编辑时间（ISO 格式）")

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> MessageData:
        """由 MongoDB 文档构造出站消息。"""
        company_id = doc.get("company_id")
        return cls(
            id=str(doc["_id"]),
            author_id=str(doc["author_id"]),
            author_name=doc.get("author_name") or "Anonymous",
            body=doc["body"],
            room_id=doc["room_id"],
            company_id=str(company_id) if company_id is not None else None,
            created_at=_iso(doc["created_at"]),
            updated_at=_iso(doc.get("updated_at")),
        )


class ChatCreatedData(BaseModel):
    """``chatCreated`` 事件负载：房间的规范状态。"""

    room_id: str
    other_user_id: str
    members: list[str]
    creator_id: str


class OnlineUser(BaseModel):
    user_id: str
    username: str


class JoinConfirmationData(BaseModel):
    room_id: str
    users: list[OnlineUser]


class CompanyMemberData(BaseModel):
    """公司成员名册条目。"""

    user_id: str = Field(..., description="用户 ID")
    first_name: str = Field(..., description="名字")
    email: str | None = Field(default=None, description="邮箱")
    position: str | None = Field(default=None, description="角色")


class UserProfileData(BaseModel):
    """身份查询接口返回的当前用户信息。"""

    user_id: str
    email: str | None = None
    company_id: str | None = None
    position: str
    first_name: str | None = None


class HistoryResponseData(BaseModel):
    """房间历史消息响应数据。"""

    room_id: str = Field(..., description="房间 ID")
    messages: list[MessageData] = Field(..., description="消息列表")
    total: int = Field(..., description="房间消息总数")

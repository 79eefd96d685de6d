"""
app.db.user_repository
~~~~~~~~~~~~~~~~~~~~~~

用户目录只读仓库 —— 查询外部系统维护的 ``users`` / ``admins`` / ``employees`` 集合。

这些集合由账号系统写入，字段沿用其驼峰命名（``firstName``、``companyId``、
``position``），本服务只读不写。
"""
from __future__ import annotations

from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.logging import get_logger

logger = get_logger(__name__)

_PROFILE_PROJECTION = {"position": 1, "firstName": 1, "companyId": 1, "email": 1}
_ROSTER_PROJECTION = {"_id": 1, "firstName": 1, "email": 1, "position": 1}


def _to_object_id(value: str) -> ObjectId | None:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class UserRepository:
    """用户目录仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._users = db["users"]
        self._admins = db["admins"]
        self._employees = db["employees"]

    async def find_chat_counterpart(self, user_id: str) -> dict[str, Any] | None:
        """查找可以发起一对一聊天的对方用户。

        仅 ``users`` 中 position 为 ``User`` 或 ``admins`` 中 position 为
        ``Admin`` 的账号有效；ID 非法时视为不存在。
        """
        oid = _to_object_id(user_id)
        if oid is None:
            return None
        user = await self._users.find_one({"_id": oid, "position": "User"})
        if user is None:
            user = await self._admins.find_one({"_id": oid, "position": "Admin"})
        return user

    async def find_profile(self, user_id: str) -> dict[str, Any] | None:
        """在 ``users`` 与 ``employees`` 中查找用户资料。"""
        oid = _to_object_id(user_id)
        if oid is None:
            return None
        user = await self._users.find_one({"_id": oid}, _PROFILE_PROJECTION)
        if user is None:
            user = await self._employees.find_one({"_id": oid}, _PROFILE_PROJECTION)
        return user

    async def list_company_members(self, company_id: str) -> list[dict[str, Any]]:
        """列出公司下 ``users`` 与 ``employees`` 的全部成员。"""
        candidates: list[Any] = [company_id]
        oid = _to_object_id(company_id)
        if oid is not None:
            candidates.append(oid)
        query = {"companyId": {"$in": candidates}}

        members = await self._users.find(query, _ROSTER_PROJECTION).to_list(length=None)
        members += await self._employees.find(query, _ROSTER_PROJECTION).to_list(length=None)
        logger.debug("公司成员已加载 | company=%s | count=%d", company_id, len(members))
        return members

"""
app.api.chat_endpoints
~~~~~~~~~~~~~~~~~~~~~~

聊天相关 REST 接口 —— 身份查询 + 公司成员名册 + 房间历史回看。

端点:
  - ``GET /user``                        → 当前登录用户信息
  - ``GET /company/users``               → 当前公司的成员名册
  - ``GET /rooms/{room_id}/history``     → 房间历史消息（分页，需为房间成员）
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_chat_system, get_current_claim
from app.core.exceptions import Forbidden, RoomNotFound, Unauthenticated, Unauthorized
from app.core.logging import get_logger
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.schemas.api_response import ApiResponse
from app.schemas.chat import (
    CompanyMemberData,
    HistoryResponseData,
    IdentityClaim,
    MessageData,
    UserProfileData,
)
from app.services.chat_system import ChatSystem

logger = get_logger(__name__)

router: APIRouter = APIRouter()


# ── 身份查询 ──────────────────────────────────────────────────────────

@router.get("/user", summary="获取当前用户信息", response_model=ApiResponse[UserProfileData])
@limiter.limit("10/second")
async def current_user(
    request: Request,
    claim: IdentityClaim = Depends(get_current_claim),
    system: ChatSystem = Depends(get_chat_system),
):
    """根据凭证查询当前用户资料（``users`` 与 ``employees`` 集合）。"""
    profile = await system.users.find_profile(claim.user_id)
    if profile is None:
        raise Unauthenticated("用户不存在")
    if profile.get("position") not in settings.IDENTITY_LOOKUP_ROLES:
        raise Forbidden()

    company_id = profile.get("companyId")
    return ApiResponse.ok(
        data=UserProfileData(
            user_id=claim.user_id,
            email=profile.get("email"),
            company_id=str(company_id) if company_id is not None else None,
            position=profile["position"],
            first_name=profile.get("firstName"),
        ),
    )


@router.get(
    "/company/users",
    summary="获取公司成员名册",
    response_model=ApiResponse[list[CompanyMemberData]],
)
@limiter.limit("5/second")
async def company_users(
    request: Request,
    claim: IdentityClaim = Depends(get_current_claim),
    system: ChatSystem = Depends(get_chat_system),
):
    """返回与当前用户同公司的全部成员。"""
    if claim.company_id is None:
        return ApiResponse.ok(data=[])

    members = await system.users.list_company_members(claim.company_id)
    return ApiResponse.ok(
        data=[
            CompanyMemberData(
                user_id=str(member["_id"]),
                first_name=member.get("firstName") or "Anonymous",
                email=member.get("email"),
                position=member.get("position"),
            )
            for member in members
        ],
    )


# ── 历史回看 ──────────────────────────────────────────────────────────

@router.get(
    "/rooms/{room_id}/history",
    summary="获取聊天历史",
    response_model=ApiResponse[HistoryResponseData],
)
@limiter.limit("10/second")
async def get_history(
    request: Request,
    room_id: str,
    skip: int = Query(0, ge=0, description="跳过条数（分页偏移）"),
    limit: int = Query(100, ge=1, le=500, description="每页最大条数"),
    claim: IdentityClaim = Depends(get_current_claim),
    system: ChatSystem = Depends(get_chat_system),
):
    """获取指定聊天的历史消息（按时间正序）。

    鉴权以持久化的房间成员为准，而不是进程内缓存。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        room_id: 房间唯一标识。
        skip: 跳过条数（分页偏移）。
        limit: 每页最大条数（1-500）。
    """
    room = await system.rooms.find_room(room_id)
    if room is None:
        raise RoomNotFound()
    if claim.user_id not in room["members"]:
        raise Unauthorized("你无权查看此聊天")

    messages = await system.messages.get_room_messages(room_id, skip=skip, limit=limit)
    total = await system.messages.count_messages(room_id)
    logger.debug("历史消息已加载 | room=%s | count=%d", room_id, len(messages))

    return ApiResponse.ok(
        data=HistoryResponseData(
            room_id=room_id,
            messages=[MessageData.from_document(msg) for msg in messages],
            total=total,
        ),
    )

from fastapi import Request

from app.core.security import IdentityVerifier
from app.schemas.chat import IdentityClaim
from app.services.chat_system import ChatSystem


def get_chat_system(request: Request) -> ChatSystem:
    return request.app.state.chat_system


def get_http_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.http_verifier


def get_current_claim(request: Request) -> IdentityClaim:
    """从 Cookie 或 Bearer 头中解析当前用户（HTTP 接口不限制角色）。"""
    verifier = get_http_verifier(request)
    return verifier.authenticate(request.cookies, request.headers)

"""
app.core.security
~~~~~~~~~~~~~~~~~

身份校验：从握手信息中提取 JWT、校验签名与有效期，并检查角色白名单。

凭证来源优先级：Cookie（``settings.AUTH_COOKIE_NAME``）> ``Authorization: Bearer``
请求头 > ``?token=`` 查询参数（浏览器无法为 WebSocket 握手设置请求头）。
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import jwt

from app.core.exceptions import (
    Forbidden,
    InvalidCredential,
    TokenExpired,
    Unauthenticated,
)
from app.core.logging import get_logger
from app.schemas.chat import IdentityClaim

logger = get_logger(__name__)

_BEARER_PREFIX = "bearer "


class IdentityVerifier:
    """JWT 身份校验器。

    Attributes:
        allowed_roles: 允许通过的角色集合；为 ``None`` 时不做角色限制。
        cookie_name: 携带凭证的 Cookie 名称。
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        allowed_roles: Iterable[str] | None = None,
        cookie_name: str = "token",
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self.allowed_roles: frozenset[str] | None = (
            frozenset(allowed_roles) if allowed_roles is not None else None
        )
        self.cookie_name = cookie_name

    def extract_token(
        self,
        cookies: Mapping[str, str],
        headers: Mapping[str, str],
        query_params: Mapping[str, str] | None = None,
    ) -> str:
        """从握手信息中提取原始凭证。

        Raises:
            Unauthenticated: 三处均未携带凭证。
        """
        token = cookies.get(self.cookie_name)
        if token:
            return token

        authorization = headers.get("authorization", "")
        if authorization.lower().startswith(_BEARER_PREFIX):
            token = authorization[len(_BEARER_PREFIX):].strip()
            if token:
                return token

        if query_params is not None:
            token = query_params.get("token")
            if token:
                return token

        raise Unauthenticated()

    def verify_token(self, token: str) -> IdentityClaim:
        """校验凭证并解码为 ``IdentityClaim``。

        Raises:
            TokenExpired: 凭证已过期。
            InvalidCredential: 签名错误、格式错误或缺少必要字段。
            Forbidden: 角色不在白名单中。
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token, self._secret, algorithms=[self._algorithm],
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpired() from e
        except jwt.InvalidTokenError as e:
            raise InvalidCredential() from e

        user_id = payload.get("userId")
        role = payload.get("position")
        if not user_id or not role:
            raise InvalidCredential("访问凭证缺少用户信息")

        if self.allowed_roles is not None and role not in self.allowed_roles:
            logger.warning("角色不在白名单中 | user=%s | role=%s", user_id, role)
            raise Forbidden()

        company_id = payload.get("companyId")
        return IdentityClaim(
            user_id=str(user_id),
            role=str(role),
            company_id=str(company_id) if company_id is not None else None,
            display_name=payload.get("firstName") or "Anonymous",
        )

    def authenticate(
        self,
        cookies: Mapping[str, str],
        headers: Mapping[str, str],
        query_params: Mapping[str, str] | None = None,
    ) -> IdentityClaim:
        """提取并校验凭证，一步得到身份声明。"""
        token = self.extract_token(cookies, headers, query_params)
        return self.verify_token(token)

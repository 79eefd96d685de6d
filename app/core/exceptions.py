"""
app.core.exceptions
~~~~~~~~~~~~~~~~~~~

聊天业务异常体系。

所有业务异常都继承 ``ChatError``，携带一条可直接展示给客户端的 ``message``
和对应的 HTTP 状态码。

- WebSocket 事件：在 ``ChatSystem.dispatch`` 边界被捕获，转换为发给发起连接的
  ``errorMessage``，连接保持打开。
- 握手阶段：鉴权类异常直接拒绝连接。
- HTTP 接口：由全局异常处理器转换为 ``ApiResponse.fail()``。
"""
from __future__ import annotations


class ChatError(Exception):
    """聊天业务异常基类。"""

    status_code: int = 400
    default_message: str = "请求处理失败"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ── 鉴权（连接级，握手失败直接拒绝） ────────────────────────────────────

class Unauthenticated(ChatError):
    """未携带凭证。"""

    status_code = 401
    default_message = "未登录，缺少访问凭证"


class InvalidCredential(Unauthenticated):
    """凭证签名错误或格式非法。"""

    default_message = "无效的访问凭证"


class TokenExpired(Unauthenticated):
    """凭证已过期。"""

    default_message = "访问凭证已过期"


class Forbidden(ChatError):
    """角色不在允许列表中。"""

    status_code = 403
    default_message = "当前角色无权访问"


# ── 事件级 ───────────────────────────────────────────────────────────

class Unauthorized(ChatError):
    """已登录，但对目标房间或消息没有操作权限。"""

    status_code = 403
    default_message = "你无权执行此操作"


class ValidationError(ChatError):
    """输入不合法。"""

    status_code = 400
    default_message = "请求参数不合法"


class InvalidId(ValidationError):
    default_message = "无效的消息 ID"


class NoActiveRoom(ValidationError):
    default_message = "尚未选择聊天"


class AmbiguousRoom(ValidationError):
    default_message = "当前连接加入了多个聊天，请指定 room_id"


class NotFound(ChatError):
    status_code = 404
    default_message = "资源不存在"


class RoomNotFound(NotFound):
    default_message = "聊天不存在"


class MessageNotFound(NotFound):
    default_message = "该聊天中不存在此消息"


class UserNotFound(NotFound):
    default_message = "用户不存在或角色无效"


class ServerError(ChatError):
    """持久化或后端故障，详细信息只写日志。"""

    status_code = 500
    default_message = "服务器内部错误，请稍后重试"

"""
app.api.chat_ws
~~~~~~~~~~~~~~~

WebSocket 实时聊天接口。

提供 ``/ws/chat`` 端点：握手时校验 JWT（Cookie / Bearer / ``?token=``），
失败则在 accept 之前直接关闭（4401 未认证，4403 角色无权）。

消息协议（JSON 帧）:
  - 入站 ``{"event": "sendMessage", "data": {"room_id": ..., "body": ...}}`` 等
  - 出站 ``{"event": "newMessage", "data": {...}}`` 等
  - 出错时只回送给发起连接 ``{"event": "errorMessage", "data": "<原因>"}``
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.exceptions import ChatError, Forbidden, ValidationError
from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.security import IdentityVerifier
from app.core.settings import settings
from app.schemas.events import InboundEvent
from app.services.chat_system import ChatSystem
from app.services.connection import Connection

logger = get_logger(__name__)

router: APIRouter = APIRouter()

WS_CLOSE_UNAUTHENTICATED = 4401
WS_CLOSE_FORBIDDEN = 4403


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天端点。

    每个连接拆成接收与处理两个协程：接收端负责解析与限流，处理端按到达顺序
    逐个执行事件，保证同一连接的事件按接收顺序处理。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(ws_req_id)

    try:
        verifier: IdentityVerifier = websocket.app.state.identity_verifier
        system: ChatSystem = websocket.app.state.chat_system

        try:
            claim = verifier.authenticate(
                websocket.cookies, websocket.headers, websocket.query_params,
            )
        except ChatError as e:
            code = WS_CLOSE_FORBIDDEN if isinstance(e, Forbidden) else WS_CLOSE_UNAUTHENTICATED
            logger.warning("握手鉴权失败 | code=%d | reason=%s", code, e.message)
            await websocket.close(code=code, reason=e.message)
            return

        await websocket.accept()
        conn = Connection(websocket, claim)
        await system.connect(conn)

        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_MESSAGE_INTERVAL)
        # 用于隔离接收与处理的队列，确保无论处理多慢，接收端都能按到达时间正确判断限流
        queue: asyncio.Queue[InboundEvent | None] = asyncio.Queue(
            maxsize=settings.WS_QUEUE_SIZE,
        )

        async def receive_loop() -> None:
            try:
                while True:
                    raw: str = await websocket.receive_text()
                    try:
                        event = system.parse_event(raw)
                    except ChatError as e:
                        await system.report_error(conn, e)
                        continue

                    if event.event == "sendMessage" and not ws_limiter.is_allowed(conn.id):
                        await system.report_error(
                            conn, ValidationError("发送速度太快啦，请慢一点"),
                        )
                        continue

                    try:
                        queue.put_nowait(event)
                    except asyncio.QueueFull:
                        logger.warning("WS 队列已满，丢弃事件 | user=%s", conn.user_id)
                        await system.report_error(
                            conn, ValidationError("消息处理不过来啦，请稍后重试"),
                        )
            except WebSocketDisconnect:
                pass  # 正常断开
            except Exception as e:
                logger.error("WebSocket 接收异常: %s | user=%s", e, conn.user_id, exc_info=True)
            finally:
                await queue.put(None)  # 发送结束信号给处理协程

        async def process_loop() -> None:
            while True:
                event = await queue.get()
                if event is None:
                    break
                await system.dispatch(conn, event)

        try:
            await asyncio.gather(receive_loop(), process_loop())
        finally:
            ws_limiter.remove_client(conn.id)
            await system.disconnect(conn)

    finally:
        request_id_ctx_var.reset(token)

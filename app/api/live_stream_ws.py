"""
app.api.live_stream_ws
~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 直播间在线状态与弹幕。

提供 ``/ws/live`` 端点。一条连接就是一个会话，可以同时加入多个直播间。

上行事件（JSON 文本）:
  - ``{"event": "join_stream", "data": <streamId>}``
  - ``{"event": "leave_stream", "data": <streamId>}``
  - ``{"event": "chat_message", "data": {"streamId", "userId", "username", "avatar", "message"}}``

下行事件:
  - ``viewer_count {streamId, count}`` —— 房间人数变化
  - ``new_message {id, userId, username, avatar, message, timestamp}`` —— 弹幕
  - ``chat_history {streamId, messages}`` —— 加入时的最近弹幕回填（仅发给自己）
  - ``system {message}`` —— 限流等提示
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.settings import settings
from app.schemas.live_events import ClientEvent, ServerEvent
from app.services.presence import PresenceCoordinator
from app.services.room_broadcaster import WebSocketRoomBroadcaster

logger = get_logger(__name__)

router: APIRouter = APIRouter()


def _system_notice(text: str) -> str:
    return ServerEvent(event="system", data={"message": text}).to_json()


@router.websocket("/ws/live")
async def websocket_live_endpoint(websocket: WebSocket) -> None:
    """WebSocket 直播间端点。

    接收与处理拆成两个协程：接收端按到达时间做限流并放入 FIFO 队列，
    处理端按顺序逐条交给协调器，保证同一会话的事件不会乱序。
    无论以何种方式退出，都会执行 ``on_disconnect`` 清理该会话的所有房间。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    session_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(session_id)

    try:
        presence: PresenceCoordinator = websocket.app.state.presence
        broadcaster: WebSocketRoomBroadcaster = websocket.app.state.broadcaster

        await websocket.accept()
        broadcaster.register(session_id, websocket)
        presence.on_connect(session_id)
        logger.info("连接已建立 | session=%s", session_id)

        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
        queue: asyncio.Queue[ClientEvent | None] = asyncio.Queue(
            maxsize=settings.WS_QUEUE_MAXSIZE,
        )

        async def receive_loop() -> None:
            try:
                while True:
                    raw: str = await websocket.receive_text()
                    try:
                        event = ClientEvent.model_validate_json(raw)
                    except ValidationError:
                        logger.warning("无法解析的上行帧，已丢弃 | size=%d", len(raw))
                        continue

                    # 限流检查：按实际到达时间，只约束弹幕
                    if event.event == "chat_message" and not ws_limiter.is_allowed(session_id):
                        await websocket.send_text(_system_notice("发送弹幕的速度太快啦，请慢一点~"))
                        continue
                    try:
                        queue.put_nowait(event)
                    except asyncio.QueueFull:
                        await websocket.send_text(_system_notice("消息处理不过来啦，请稍后重试~"))
                        logger.warning("WS 队列已满，丢弃事件 | event=%s", event.event)
            except WebSocketDisconnect:
                pass  # 正常断开
            except Exception as e:
                logger.error("WebSocket 接收异常: %s", e, exc_info=True)

        async def process_loop() -> None:
            while True:
                event = await queue.get()
                if event is None:
                    break
                try:
                    await presence.handle_event(session_id, event)
                except Exception as e:
                    # 单条事件失败不应终止整个连接
                    logger.error("WebSocket 处理异常: %s | event=%s", e, event.event, exc_info=True)

        async def cleanup() -> None:
            try:
                await presence.on_disconnect(session_id)
            finally:
                broadcaster.unregister(session_id)
                ws_limiter.remove_client(session_id)
                logger.info("连接已断开 | session=%s", session_id)

        process_task = asyncio.create_task(process_loop())
        try:
            await receive_loop()
            await queue.put(None)  # 发送结束信号，处理完已排队的事件再退出
            await process_task
        finally:
            # 端点协程被取消（服务关闭 / 客户端中断）时不能等待队列腾出空间，
            # 直接取消处理协程，离房清理也必须完成
            process_task.cancel()
            await asyncio.shield(cleanup())

    finally:
        request_id_ctx_var.reset(token)

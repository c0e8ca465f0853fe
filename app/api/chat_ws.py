"""
app.api.chat_ws
~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 多房间聊天模式。

提供 ``/ws`` 端点。上下行统一使用 JSON 信封 ``{"event": ..., "data": ...}``:

上行: ``register_user`` / ``join`` / ``reconnect_session`` / ``create_room`` /
``switch_room`` / ``send_message``

下行: ``registration_success`` / ``username_taken`` / ``email_taken`` /
``join_success`` / ``room_created`` / ``room_exists`` / ``error`` /
``room_users`` / ``message`` / ``available_rooms``
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.logging import connection_id_ctx_var, get_logger
from app.schemas.chat_events import EventEnvelope
from app.services.chat_system import ChatSystem

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天端点。

    接收与发送解耦：接收循环把事件交给 ``ChatSystem`` 同步处理，
    下行事件进入连接自己的队列，由独立的 ``pump`` 协程按顺序写出。
    连接结束时（无论正常断开还是异常）恰好执行一次 ``disconnect``。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    await websocket.accept()
    system: ChatSystem = websocket.app.state.chat_system
    connection = system.connect()
    connection_id = connection.connection_id
    token = connection_id_ctx_var.set(connection_id)

    pump_task = asyncio.create_task(system.hub.pump(connection, websocket))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw: str | None = message.get("text")
            if raw is None:
                logger.warning("收到二进制帧，已忽略")
                system.hub.send(connection_id, "error", {"text": "Malformed event envelope"})
                continue
            try:
                envelope = EventEnvelope.model_validate_json(raw)
            except ValidationError:
                logger.warning("无法解析的上行消息，已忽略")
                system.hub.send(connection_id, "error", {"text": "Malformed event envelope"})
                continue
            system.handle_event(connection_id, envelope.event, envelope.data)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
        system.disconnect(connection_id)
        connection_id_ctx_var.reset(token)

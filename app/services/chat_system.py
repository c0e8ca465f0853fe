"""
app.services.chat_system
~~~~~~~~~~~~~~~~~~~~~~~~

聊天系统 —— 组装身份注册表、房间目录、连接中枢、在线状态协调器和
重连处理器，并把上行事件分发到对应的业务操作。

在 FastAPI lifespan 中初始化并挂载于 ``app.state.chat_system``。
事件处理全部是同步的，整个进程在单个事件循环内按到达顺序逐个处理事件。
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError

from app.core.config import Settings, settings
from app.core.errors import ChatError
from app.core.logging import get_logger
from app.schemas.chat_events import (
    AvailableRoomsData,
    JoinPayload,
    RegisterUserPayload,
    RoomNamePayload,
    SendMessagePayload,
)
from app.services.connection_hub import ClientConnection, ConnectionHub
from app.services.identity_registry import IdentityRegistry
from app.services.presence import PresenceCoordinator
from app.services.reconnection import ReconnectionHandler
from app.services.room_directory import RoomDirectory

logger = get_logger(__name__)

EventHandler = Callable[[str, Any], None]


def _parse(model: type[BaseModel], data: Any, shorthand: str | None = None) -> Any:
    """把原始载荷解析为 Pydantic 模型。

    ``shorthand`` 非空时允许直接传字符串，例如 ``send_message`` 的 ``"hi"``
    等价于 ``{"text": "hi"}``。
    """
    if data is None:
        data = {}
    elif shorthand is not None and isinstance(data, str):
        data = {shorthand: data}
    return model.model_validate(data)


class ChatSystem:
    """聊天系统（每个应用实例一个）。

    Attributes:
        settings: 当前生效的配置。
        registry: 身份注册表。
        directory: 房间目录。
        hub: 连接中枢。
        presence: 在线状态协调器。
        reconnection: 重连处理器。
    """

    def __init__(
        self,
        config: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings: Settings = config or settings
        self.registry = IdentityRegistry(username_max_length=self.settings.USERNAME_MAX_LENGTH)
        self.directory = RoomDirectory(
            self.settings.DEFAULT_ROOMS,
            history_limit=self.settings.ROOM_HISTORY_LIMIT,
        )
        self.hub = ConnectionHub(max_pending=self.settings.OUTBOX_MAX_SIZE)
        self.presence = PresenceCoordinator(
            self.registry,
            self.directory,
            self.hub,
            room_name_max_length=self.settings.ROOM_NAME_MAX_LENGTH,
            message_max_length=self.settings.MESSAGE_MAX_LENGTH,
            clock=clock,
        )
        self.reconnection = ReconnectionHandler(self.presence)

        self._handlers: dict[str, EventHandler] = {
            "register_user": self._on_register_user,
            "join": self._on_join,
            "reconnect_session": self._on_reconnect_session,
            "create_room": self._on_create_room,
            "switch_room": self._on_switch_room,
            "send_message": self._on_send_message,
        }
        logger.info("聊天系统已初始化 | 默认房间: %s", ", ".join(self.directory.list_room_names()))

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def connect(self, connection_id: str | None = None) -> ClientConnection:
        """登记新连接，并把当前房间列表单播给它。"""
        connection = self.hub.open(connection_id)
        self.hub.send(
            connection.connection_id,
            "available_rooms",
            AvailableRoomsData(names=self.directory.list_room_names()),
        )
        logger.info("新连接 | 当前在线: %d", self.hub.online_count)
        return connection

    def disconnect(self, connection_id: str) -> None:
        """连接断开。同一连接只会处理一次，重复调用为无操作。"""
        if self.hub.get(connection_id) is None:
            return
        self.hub.close(connection_id)
        self.presence.disconnect(connection_id)
        logger.info("连接已关闭 | 当前在线: %d", self.hub.online_count)

    # ── 事件分发 ──────────────────────────────────────────────────────

    def handle_event(self, connection_id: str, event: str, data: Any = None) -> None:
        """处理一条上行事件，业务异常转换为对应的下行信号回复调用方。"""
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("未知事件 | event=%s", event)
            self.hub.send(connection_id, "error", {"text": f"Unknown event: {event}"})
            return

        try:
            handler(connection_id, data)
        except PayloadValidationError:
            logger.warning("载荷格式非法 | event=%s", event)
            self.hub.send(connection_id, "error", {"text": f"Malformed {event} payload"})
        except ChatError as e:
            logger.info("操作被拒绝 | event=%s | %s", event, e.message)
            self.hub.send(connection_id, e.event, e.payload())

    def _on_register_user(self, connection_id: str, data: Any) -> None:
        payload = _parse(RegisterUserPayload, data)
        self.presence.register_user(connection_id, payload.username, payload.email)

    def _on_join(self, connection_id: str, data: Any) -> None:
        payload = _parse(JoinPayload, data)
        self.presence.join(connection_id, payload.username, payload.email, payload.room)

    def _on_reconnect_session(self, connection_id: str, data: Any) -> None:
        payload = _parse(JoinPayload, data)
        self.reconnection.reconnect(connection_id, payload.username, payload.email, payload.room)

    def _on_create_room(self, connection_id: str, data: Any) -> None:
        payload = _parse(RoomNamePayload, data, shorthand="name")
        self.presence.create_room(connection_id, payload.name)

    def _on_switch_room(self, connection_id: str, data: Any) -> None:
        payload = _parse(RoomNamePayload, data, shorthand="name")
        self.presence.switch_room(connection_id, payload.name)

    def _on_send_message(self, connection_id: str, data: Any) -> None:
        payload = _parse(SendMessagePayload, data, shorthand="text")
        self.presence.send_message(connection_id, payload.text)

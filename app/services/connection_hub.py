"""
app.services.connection_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接中枢 —— 维护全部在线连接及其下行消息队列，提供单播、房间广播与全局广播。

入队是同步操作（``put_nowait``），因此业务层发出事件的顺序就是每个成员
收到事件的顺序；真正的网络发送由每个连接独立的 ``pump`` 协程完成，
不会在业务状态变更过程中挂起。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel

from app.core.logging import get_logger

logger = get_logger(__name__)


def new_connection_id() -> str:
    """分配一个不透明的连接 ID。"""
    return uuid.uuid4().hex[:12]


def _encode(event: str, data: Any) -> dict[str, Any]:
    # 入队时即序列化为纯数据，保证按值转发
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"event": event, "data": data}


class ClientConnection:
    """一个在线连接。

    Attributes:
        connection_id: 连接唯一标识。
        outbox: 待发送的下行事件队列。
    """

    def __init__(self, connection_id: str, max_pending: int = 0) -> None:
        self.connection_id = connection_id
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_pending)
        self.overflowed: bool = False

    def offer(self, envelope: dict[str, Any]) -> None:
        """入队一条下行事件。队列已满时标记溢出，之后的事件全部丢弃。"""
        if self.overflowed:
            return
        try:
            self.outbox.put_nowait(envelope)
        except asyncio.QueueFull:
            self.overflowed = True
            logger.warning("下行队列已满，连接将被关闭 | conn=%s", self.connection_id)

    def drain(self) -> list[dict[str, Any]]:
        """取出当前队列中的全部事件（不等待）。"""
        events: list[dict[str, Any]] = []
        while not self.outbox.empty():
            events.append(self.outbox.get_nowait())
        return events


class ConnectionHub:
    """连接中枢。

    Attributes:
        connections: 当前在线的全部连接。
        max_pending: 每个连接最多积压的下行事件数，0 表示不限。
    """

    def __init__(self, max_pending: int = 0) -> None:
        self.connections: dict[str, ClientConnection] = {}
        self.max_pending = max_pending

    def open(self, connection_id: str | None = None) -> ClientConnection:
        """登记新连接并分配下行队列。"""
        connection = ClientConnection(connection_id or new_connection_id(), self.max_pending)
        self.connections[connection.connection_id] = connection
        return connection

    def close(self, connection_id: str) -> None:
        """注销连接（幂等），未发送的事件随之丢弃。"""
        self.connections.pop(connection_id, None)

    def get(self, connection_id: str) -> ClientConnection | None:
        return self.connections.get(connection_id)

    def send(self, connection_id: str, event: str, data: Any = None) -> None:
        """单播给指定连接，连接已断开时静默忽略。"""
        connection = self.connections.get(connection_id)
        if connection is not None:
            connection.offer(_encode(event, data))

    def send_many(self, connection_ids: Iterable[str], event: str, data: Any = None) -> None:
        """广播给一组连接（通常是某个房间的成员）。"""
        envelope = _encode(event, data)
        for connection_id in connection_ids:
            connection = self.connections.get(connection_id)
            if connection is not None:
                connection.offer(dict(envelope))

    def broadcast(self, event: str, data: Any = None) -> None:
        """广播给所有在线连接。"""
        self.send_many(list(self.connections), event, data)

    async def pump(self, connection: ClientConnection, websocket: WebSocket) -> None:
        """把连接的下行队列持续写入 WebSocket，直到被取消。

        队列溢出的连接读取过慢，写完积压事件后以 1008 关闭。
        """
        while True:
            if connection.overflowed and connection.outbox.empty():
                await websocket.close(code=1008)
                return
            envelope = await connection.outbox.get()
            await websocket.send_json(envelope)

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self.connections)

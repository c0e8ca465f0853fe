"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 构造全新的内存态 ``ChatSystem``，
并提供打开连接、读取下行事件的辅助工具，单元测试无需真实 WebSocket。
"""
from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from app.core.config import Settings  # noqa: E402
from app.services.chat_system import ChatSystem  # noqa: E402
from app.services.connection_hub import ClientConnection  # noqa: E402

# 固定时钟：所有消息时间戳为 3:04:05 PM
FIXED_NOW: datetime = datetime(2024, 5, 1, 15, 4, 5)


@pytest.fixture()
def chat_settings() -> Settings:
    """测试环境配置（默认房间 General / Technology / Random）。"""
    return Settings(ENVIRONMENT="test")


@pytest.fixture()
def system(chat_settings: Settings) -> ChatSystem:
    """全新的聊天系统，时钟固定。"""
    return ChatSystem(chat_settings, clock=lambda: FIXED_NOW)


@pytest.fixture()
def connect(system: ChatSystem) -> Callable[[], ClientConnection]:
    """打开一个新连接，并丢弃连接时收到的 ``available_rooms``。"""

    def _connect() -> ClientConnection:
        connection = system.connect()
        connection.drain()
        return connection

    return _connect


@pytest.fixture()
def events() -> Callable[..., list[Any]]:
    """取出连接队列中的下行事件。

    ``events(conn)`` 返回事件名列表；``events(conn, "message")`` 返回该事件的数据列表。
    """

    def _events(connection: ClientConnection, name: str | None = None) -> list[Any]:
        drained = connection.drain()
        if name is None:
            return [envelope["event"] for envelope in drained]
        return [envelope["data"] for envelope in drained if envelope["event"] == name]

    return _events

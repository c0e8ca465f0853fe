"""
tests.test_chat_system
~~~~~~~~~~~~~~~~~~~~~~

ChatSystem 事件分发单元测试：载荷解析、业务异常到下行信号的转换。
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from app.services.chat_system import ChatSystem
from app.services.connection_hub import ClientConnection

Connect = Callable[[], ClientConnection]
Events = Callable[..., list[Any]]


class TestConnectionLifecycle:
    """测试连接登记与断开。"""

    def test_connect_sends_room_list(self, system: ChatSystem, events: Events) -> None:
        """新连接立即收到当前房间列表。"""
        connection = system.connect()

        assert events(connection, "available_rooms") == [
            {"names": ["General", "Technology", "Random"]},
        ]
        assert system.hub.online_count == 1

    def test_disconnect_is_idempotent(self, system: ChatSystem, connect: Connect) -> None:
        """重复断开同一连接为无操作。"""
        connection = connect()

        system.disconnect(connection.connection_id)
        system.disconnect(connection.connection_id)

        assert system.hub.online_count == 0


class TestHandleEvent:
    """测试上行事件分发。"""

    def test_join_event(self, system: ChatSystem, connect: Connect, events: Events) -> None:
        """join 事件分发到协调器。"""
        alice = connect()

        system.handle_event(
            alice.connection_id, "join",
            {"username": "alice", "email": "alice@example.com", "room": "General"},
        )

        assert events(alice) == ["join_success", "room_users", "available_rooms", "message"]

    def test_register_user_event(self, system: ChatSystem, connect: Connect, events: Events) -> None:
        """register_user 成功回复 registration_success。"""
        alice = connect()

        system.handle_event(
            alice.connection_id, "register_user",
            {"username": "alice", "email": "Alice@Example.com"},
        )

        assert events(alice, "registration_success") == [
            {"username": "alice", "email": "alice@example.com"},
        ]

    def test_username_taken_signal(self, system: ChatSystem, connect: Connect, events: Events) -> None:
        """用户名冲突转换为无数据的 username_taken 信号。"""
        alice, other = connect(), connect()
        system.handle_event(alice.connection_id, "register_user", {"username": "alice", "email": "a@x.io"})

        system.handle_event(other.connection_id, "register_user", {"username": "alice", "email": "b@x.io"})

        assert other.drain() == [{"event": "username_taken", "data": None}]

    def test_email_taken_signal(self, system: ChatSystem, connect: Connect) -> None:
        """邮箱冲突转换为 email_taken 信号。"""
        alice, other = connect(), connect()
        system.handle_event(alice.connection_id, "register_user", {"username": "alice", "email": "a@x.io"})

        system.handle_event(other.connection_id, "register_user", {"username": "bob", "email": "A@X.io"})

        assert other.drain() == [{"event": "email_taken", "data": None}]

    def test_validation_error_signal(self, system: ChatSystem, connect: Connect) -> None:
        """缺失字段转换为 error{text}。"""
        alice = connect()

        system.handle_event(alice.connection_id, "join", {"username": "alice"})

        assert alice.drain() == [{"event": "error", "data": {"text": "Email is required"}}]

    def test_missing_payload_treated_as_empty(self, system: ChatSystem, connect: Connect) -> None:
        """缺失载荷等同于所有字段为空。"""
        alice = connect()

        system.handle_event(alice.connection_id, "join", None)

        assert alice.drain() == [{"event": "error", "data": {"text": "Username is required"}}]

    def test_room_exists_signal(self, system: ChatSystem, connect: Connect) -> None:
        """创建已存在的房间回复 room_exists。"""
        alice = connect()

        system.handle_event(alice.connection_id, "create_room", {"name": "General"})

        assert alice.drain() == [{"event": "room_exists", "data": None}]

    def test_not_found_signal(self, system: ChatSystem, connect: Connect) -> None:
        """切换到不存在的房间回复 error。"""
        alice = connect()
        system.handle_event(
            alice.connection_id, "join",
            {"username": "alice", "email": "a@x.io", "room": "General"},
        )
        alice.drain()

        system.handle_event(alice.connection_id, "switch_room", {"name": "Nowhere"})

        assert alice.drain() == [{"event": "error", "data": {"text": "Room does not exist"}}]

    def test_string_shorthand_payloads(self, system: ChatSystem, connect: Connect, events: Events) -> None:
        """create_room / switch_room / send_message 接受裸字符串载荷。"""
        alice = connect()
        system.handle_event(
            alice.connection_id, "join",
            {"username": "alice", "email": "a@x.io", "room": "General"},
        )

        system.handle_event(alice.connection_id, "create_room", "Lounge")
        system.handle_event(alice.connection_id, "switch_room", "Lounge")
        system.handle_event(alice.connection_id, "send_message", "hello <i>all</i>")

        assert system.presence.current_room(alice.connection_id) == "Lounge"
        messages = events(alice, "message")
        assert messages[-1]["author"] == "alice"
        assert messages[-1]["text"] == "hello <i>all</i>"

    def test_reconnect_session_event(self, system: ChatSystem, connect: Connect, events: Events) -> None:
        """reconnect_session 分发到重连处理器。"""
        alice = connect()

        system.handle_event(
            alice.connection_id, "reconnect_session",
            {"username": "alice", "email": "a@x.io", "room": "Random"},
        )

        assert events(alice, "message")[0]["text"] == "Welcome back to the Random room, alice!"

    def test_malformed_payload(self, system: ChatSystem, connect: Connect) -> None:
        """字段类型错误时回复 error，不修改状态。"""
        alice = connect()

        system.handle_event(alice.connection_id, "join", {"username": 42, "email": [], "room": "General"})

        assert alice.drain() == [{"event": "error", "data": {"text": "Malformed join payload"}}]
        assert len(system.registry) == 0

    def test_unknown_event(self, system: ChatSystem, connect: Connect) -> None:
        """未知事件回复 error。"""
        alice = connect()

        system.handle_event(alice.connection_id, "teleport", {})

        assert alice.drain() == [{"event": "error", "data": {"text": "Unknown event: teleport"}}]

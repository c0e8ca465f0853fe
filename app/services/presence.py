"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

在线状态协调器 —— 把身份注册表和房间目录的状态组织成
加入 / 切换 / 离开 / 断开 的状态机，并产生对应的广播。

每个连接的状态: ``Anonymous → Registered → InRoom``，终态 ``Disconnected``。

所有操作都是同步的：状态变更期间不会 ``await``，下行事件通过
``ConnectionHub`` 同步入队。每个操作先完成全部校验再做第一次变更，
失败时抛出 ``ChatError`` 且不修改任何状态。

广播对象只有三种：房间全体成员、所有连接（仅房间列表变化）、
以及对调用方的单播回复。
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from app.core.errors import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.schemas.chat_events import (
    SYSTEM_AUTHOR,
    AvailableRoomsData,
    ChatMessage,
    Identity,
    JoinSuccessData,
    RegistrationSuccessData,
    RoomCreatedData,
    RoomUsersData,
)
from app.services.chat_room import ChatRoom
from app.services.connection_hub import ConnectionHub
from app.services.identity_registry import IdentityRegistry
from app.services.room_directory import RoomDirectory
from app.services.sanitizer import sanitize

logger = get_logger(__name__)

WELCOME_TEMPLATE: str = "Welcome to the {room} room, {username}!"
JOINED_TEMPLATE: str = "{username} has joined the room"
LEFT_TEMPLATE: str = "{username} has left the room"


def format_time(moment: datetime) -> str:
    """格式化为人类可读的时间，如 ``3:04:05 PM``。"""
    return moment.strftime("%I:%M:%S %p").lstrip("0")


class PresenceCoordinator:
    """加入 / 切换 / 离开 / 断开 状态机。

    Attributes:
        registry: 身份注册表。
        directory: 房间目录。
        hub: 下行事件出口。
        room_name_max_length: 房间名截断长度。
        message_max_length: 单条消息最大长度。
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        directory: RoomDirectory,
        hub: ConnectionHub,
        room_name_max_length: int = 30,
        message_max_length: int = 1000,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.registry = registry
        self.directory = directory
        self.hub = hub
        self.room_name_max_length = room_name_max_length
        self.message_max_length = message_max_length
        self._clock = clock
        # connection_id → 当前所在房间名
        self._locations: dict[str, str] = {}

    # ── 查询 ──────────────────────────────────────────────────────────

    def current_room(self, connection_id: str) -> str | None:
        """连接当前所在的房间名，未进入任何房间时为 None。"""
        return self._locations.get(connection_id)

    def system_message(self, text: str) -> ChatMessage:
        """生成一条带当前时间戳的系统消息。"""
        return ChatMessage(author=SYSTEM_AUTHOR, text=text, time=format_time(self._clock()))

    def clean_room_name(self, name: str | None) -> str:
        return (name or "").strip()[: self.room_name_max_length]

    # ── 校验 ──────────────────────────────────────────────────────────

    def require_fields(
        self, username: str | None, email: str | None, room: str | None,
    ) -> tuple[str, str, str]:
        """检查三个必填字段，返回去除空白后的值。

        Raises:
            ValidationError: 任一字段为空。
        """
        clean_username = (username or "").strip()
        clean_email = (email or "").strip()
        clean_room = self.clean_room_name(room)
        if not clean_username:
            raise ValidationError("Username is required")
        if not clean_email:
            raise ValidationError("Email is required")
        if not clean_room:
            raise ValidationError("Room is required")
        return clean_username, clean_email, clean_room

    def check_identity(self, connection_id: str, username: str, email: str) -> tuple[str, str]:
        """校验格式与全局唯一性（排除自身），返回规范化后的 (username, email)。

        Raises:
            ValidationError: 邮箱格式非法。
            UsernameTakenError: 用户名冲突。
            EmailTakenError: 邮箱冲突。
        """
        clean_username, clean_email = self.registry.normalize(username, email)
        self.registry.ensure_available(clean_username, clean_email, excluding=connection_id)
        return clean_username, clean_email

    # ── 共享原语 ──────────────────────────────────────────────────────

    def _broadcast_room_list(self) -> None:
        self.hub.broadcast("available_rooms", AvailableRoomsData(names=self.directory.list_room_names()))

    def _broadcast_room_users(self, room: ChatRoom) -> None:
        self.hub.send_many(
            room.member_ids,
            "room_users",
            RoomUsersData(room=room.name, users=self.directory.members(room)),
        )

    def _post_to_room(self, room: ChatRoom, message: ChatMessage) -> None:
        """广播给房间全体成员并追加到历史，广播顺序即追加顺序。"""
        self.hub.send_many(room.member_ids, "message", message)
        self.directory.append_history(room, message)

    def leave_current_room(
        self,
        connection_id: str,
        announce_removal: bool = True,
        keep_room: str | None = None,
        users_first: bool = False,
    ) -> bool:
        """离开当前房间：移除成员、通知房间、回收空房间。

        Args:
            connection_id: 离开的连接。
            announce_removal: 房间被回收时是否立即广播房间列表。
            keep_room: 即将重新进入的房间名，该房间清空后不回收。
            users_first: 先广播成员表再发 left 消息（断开连接时的顺序）。

        Returns:
            连接此前是否在某个房间内。
        """
        room_name = self._locations.pop(connection_id, None)
        if room_name is None:
            return False
        room = self.directory.get_room(room_name)
        if room is None:
            return False

        username = room.username_of(connection_id)
        if not self.directory.remove_member(room, connection_id):
            return False

        if room.name != keep_room and self.directory.gc_if_empty(room):
            if announce_removal:
                self._broadcast_room_list()
        else:
            left = self.system_message(LEFT_TEMPLATE.format(username=username))
            if users_first:
                self._broadcast_room_users(room)
                self._post_to_room(room, left)
            else:
                self._post_to_room(room, left)
                self._broadcast_room_users(room)
        logger.info("离开房间 | username=%s | room=%s | 剩余: %d", username, room_name, room.online_count)
        return True

    def enter_room(
        self,
        connection_id: str,
        username: str,
        room: ChatRoom,
        welcome_template: str = WELCOME_TEMPLATE,
        joined_template: str = JOINED_TEMPLATE,
        announce_rooms: bool = True,
    ) -> None:
        """进入房间：加入成员、回送历史、通知房间成员。

        调用方需保证连接当前不在任何房间内。
        """
        history = self.directory.history(room)
        self.directory.add_member(room, connection_id, username)
        self._locations[connection_id] = room.name

        self.hub.send(
            connection_id,
            "join_success",
            JoinSuccessData(room=room.name, username=username, messages=history),
        )
        self._broadcast_room_users(room)
        if announce_rooms:
            self._broadcast_room_list()

        welcome = self.system_message(welcome_template.format(room=room.name, username=username))
        joined = self.system_message(joined_template.format(username=username))
        self.hub.send(connection_id, "message", welcome)
        others = [conn_id for conn_id in room.member_ids if conn_id != connection_id]
        self.hub.send_many(others, "message", joined)
        self.directory.append_history(room, welcome)
        self.directory.append_history(room, joined)
        logger.info("进入房间 | username=%s | room=%s | 在线: %d", username, room.name, room.online_count)

    def admit(
        self,
        connection_id: str,
        username: str,
        email: str,
        room_name: str,
        welcome_template: str = WELCOME_TEMPLATE,
        joined_template: str = JOINED_TEMPLATE,
    ) -> ChatRoom:
        """以已校验的身份进入房间：先离开旧房间，再注册身份并进入新房间。"""
        self.leave_current_room(connection_id, announce_removal=False, keep_room=room_name)
        identity = self.registry.register(connection_id, username, email)
        room = self.directory.ensure_room(room_name)
        self.enter_room(
            connection_id,
            identity.username,
            room,
            welcome_template=welcome_template,
            joined_template=joined_template,
        )
        return room

    # ── 上行事件 ──────────────────────────────────────────────────────

    def register_user(self, connection_id: str, username: str | None, email: str | None) -> Identity:
        """注册身份并回复 ``registration_success``。"""
        identity = self.registry.register(connection_id, username, email)

        room = self.directory.get_room(self._locations.get(connection_id, ""))
        if room is not None and room.username_of(connection_id) != identity.username:
            # 已在房间内改名，同步成员表
            self.directory.add_member(room, connection_id, identity.username)
            self._broadcast_room_users(room)

        self.hub.send(
            connection_id,
            "registration_success",
            RegistrationSuccessData(username=identity.username, email=identity.email),
        )
        return identity

    def join(
        self,
        connection_id: str,
        username: str | None,
        email: str | None,
        room: str | None,
    ) -> ChatRoom:
        """以 (username, email) 身份进入房间，房间不存在时自动创建。

        即使目标房间就是当前房间，也会完整地重新执行离开/进入流程。
        """
        clean_username, clean_email, room_name = self.require_fields(username, email, room)
        clean_username, clean_email = self.check_identity(connection_id, clean_username, clean_email)
        return self.admit(connection_id, clean_username, clean_email, room_name)

    def switch_room(self, connection_id: str, name: str | None) -> ChatRoom | None:
        """切换到已存在的房间，不会隐式创建房间。

        Returns:
            进入的房间；已在目标房间时为 None（无操作）。

        Raises:
            ValidationError: 未注册身份或房间名为空。
            NotFoundError: 目标房间不存在。
        """
        identity = self.registry.get(connection_id)
        if identity is None:
            raise ValidationError("You must be logged in to switch rooms")

        room_name = self.clean_room_name(name)
        if not room_name:
            raise ValidationError("Invalid room name")
        if self._locations.get(connection_id) == room_name:
            return None

        room = self.directory.get_room(room_name)
        if room is None:
            raise NotFoundError("Room does not exist")

        self.leave_current_room(connection_id)
        self.enter_room(connection_id, identity.username, room, announce_rooms=False)
        return room

    def create_room(self, connection_id: str, name: str | None) -> ChatRoom:
        """显式创建房间，创建者不会自动进入。

        Raises:
            ValidationError: 房间名为空。
            AlreadyExistsError: 房间已存在。
        """
        room_name = self.clean_room_name(name)
        if not room_name:
            raise ValidationError("Room name is required")

        room = self.directory.create_room_if_absent(room_name)
        self._broadcast_room_list()
        self.hub.send(connection_id, "room_created", RoomCreatedData(name=room.name))
        return room

    def send_message(self, connection_id: str, text: str | None) -> ChatMessage | None:
        """净化并广播一条聊天消息（发送者也会收到）。

        Returns:
            广播的消息；未进入房间或文本为空时为 None。

        Raises:
            ValidationError: 文本超过 ``message_max_length``。
        """
        room = self.directory.get_room(self._locations.get(connection_id, ""))
        if room is None:
            return None

        content = (text or "").strip()
        if not content:
            return None
        if len(content) > self.message_max_length:
            raise ValidationError(f"Message is too long (max {self.message_max_length} characters)")

        message = ChatMessage(
            author=room.username_of(connection_id),
            text=sanitize(content),
            time=format_time(self._clock()),
        )
        self._post_to_room(room, message)
        logger.debug("消息已广播 | room=%s | 长度: %d", room.name, len(message.text))
        return message

    def disconnect(self, connection_id: str) -> None:
        """连接断开：离开房间并清除身份。对未注册的连接也安全（无操作）。"""
        left = self.leave_current_room(connection_id, users_first=True)
        identity = self.registry.unregister(connection_id)
        if left or identity is not None:
            logger.info(
                "用户已断开 | username=%s",
                identity.username if identity is not None else "-",
            )

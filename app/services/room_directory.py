"""
app.services.room_directory
~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间目录 —— 持有全部聊天室，管理房间的创建、成员变更、历史追加与回收。

- ``ensure_room(name)``            → 获取/创建房间（幂等，静默）
- ``create_room_if_absent(name)``  → 显式创建，已存在时抛 ``AlreadyExistsError``
- ``gc_if_empty(room)``            → 成员清空后回收非默认房间
- ``list_room_names()``            → 房间名快照（创建顺序，默认房间在前）

默认房间在启动时预建，永不回收。
"""
from __future__ import annotations

from collections.abc import Iterable

from app.core.errors import AlreadyExistsError
from app.core.logging import get_logger
from app.schemas.chat_events import ChatMessage, RoomInfoData, RoomMember
from app.services.chat_room import ChatRoom

logger = get_logger(__name__)


class RoomDirectory:
    """全部 ``ChatRoom`` 的唯一持有者。

    Attributes:
        default_rooms: 永久默认房间名集合。
        history_limit: 新建房间的历史消息上限。
    """

    def __init__(self, default_rooms: Iterable[str] = (), history_limit: int = 100) -> None:
        self.default_rooms: frozenset[str] = frozenset(default_rooms)
        self.history_limit = history_limit
        self._rooms: dict[str, ChatRoom] = {}

        for name in default_rooms:
            self._rooms[name] = ChatRoom(name, capacity=history_limit, is_default=True)

    def __contains__(self, name: object) -> bool:
        return name in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def is_default(self, name: str) -> bool:
        return name in self.default_rooms

    def get_room(self, name: str) -> ChatRoom | None:
        return self._rooms.get(name)

    def has_room(self, name: str) -> bool:
        return name in self._rooms

    # ── 创建 ──────────────────────────────────────────────────────────

    def _create(self, name: str) -> ChatRoom:
        room = ChatRoom(name, capacity=self.history_limit, is_default=self.is_default(name))
        self._rooms[name] = room
        logger.info("房间已创建 | room=%s | 房间总数: %d", name, len(self._rooms))
        return room

    def ensure_room(self, name: str) -> ChatRoom:
        """获取指定房间，不存在则创建空房间。"""
        room = self._rooms.get(name)
        if room is None:
            room = self._create(name)
        return room

    def create_room_if_absent(self, name: str) -> ChatRoom:
        """显式创建房间。

        Raises:
            AlreadyExistsError: 同名房间已存在。
        """
        if name in self._rooms:
            raise AlreadyExistsError(name)
        return self._create(name)

    # ── 成员 ──────────────────────────────────────────────────────────

    def add_member(self, room: ChatRoom, connection_id: str, username: str) -> None:
        room.add_member(connection_id, username)

    def remove_member(self, room: ChatRoom, connection_id: str) -> bool:
        """移除成员。调用方随后必须调用 ``gc_if_empty``。"""
        return room.remove_member(connection_id)

    def members(self, room: ChatRoom) -> list[RoomMember]:
        return room.members

    # ── 历史 ──────────────────────────────────────────────────────────

    def append_history(self, room: ChatRoom, message: ChatMessage) -> None:
        """追加历史消息，保证不超过 ``history_limit`` 条。"""
        room.append(message)

    def history(self, room: ChatRoom) -> list[ChatMessage]:
        return room.history

    # ── 回收 ──────────────────────────────────────────────────────────

    def gc_if_empty(self, room: ChatRoom) -> bool:
        """成员为空且非默认房间时删除该房间。

        Returns:
            房间是否被删除。
        """
        if not room.is_empty or self.is_default(room.name):
            return False
        if self._rooms.get(room.name) is room:
            del self._rooms[room.name]
            logger.info("空房间已回收 | room=%s | 房间总数: %d", room.name, len(self._rooms))
            return True
        return False

    # ── 查询 ──────────────────────────────────────────────────────────

    def list_room_names(self) -> list[str]:
        """房间名快照，用于 ``available_rooms`` 广播。"""
        return list(self._rooms)

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有房间的摘要信息。"""
        return [room.info() for room in self._rooms.values()]

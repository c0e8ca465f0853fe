"""
app.services.chat_room
~~~~~~~~~~~~~~~~~~~~~~

聊天室领域模型 —— 封装一个房间的成员表与有界历史消息。

每个 ``ChatRoom`` 拥有独立的成员表和历史缓冲区，房间之间互不干扰。
``ChatRoom`` 只由 ``RoomDirectory`` 创建和持有。
"""
from __future__ import annotations

from collections import deque

from app.schemas.chat_events import ChatMessage, RoomInfoData, RoomMember


class ChatRoom:
    """一个聊天室实体。

    Attributes:
        name: 房间名（唯一标识）。
        capacity: 历史消息上限，超出时淘汰最旧的一条。
        is_default: 是否为永久默认房间（成员清空后不回收）。
    """

    def __init__(self, name: str, capacity: int = 100, is_default: bool = False) -> None:
        self.name = name
        self.capacity = capacity
        self.is_default = is_default
        # connection_id → username，保持加入顺序
        self._members: dict[str, str] = {}
        self._history: deque[ChatMessage] = deque(maxlen=capacity)

    # ── 成员 ──────────────────────────────────────────────────────────

    def add_member(self, connection_id: str, username: str) -> None:
        self._members[connection_id] = username

    def remove_member(self, connection_id: str) -> bool:
        """移除成员，返回该连接此前是否在房间内。"""
        return self._members.pop(connection_id, None) is not None

    def has_member(self, connection_id: str) -> bool:
        return connection_id in self._members

    def username_of(self, connection_id: str) -> str:
        """成员在本房间内显示的用户名，非成员返回空串。"""
        return self._members.get(connection_id, "")

    @property
    def member_ids(self) -> list[str]:
        """当前成员的连接 ID 快照。"""
        return list(self._members)

    @property
    def members(self) -> list[RoomMember]:
        """当前成员列表快照（按加入顺序）。"""
        return [
            RoomMember(id=conn_id, username=username)
            for conn_id, username in self._members.items()
        ]

    @property
    def online_count(self) -> int:
        """当前在线人数。"""
        return len(self._members)

    @property
    def is_empty(self) -> bool:
        return not self._members

    # ── 历史 ──────────────────────────────────────────────────────────

    def append(self, message: ChatMessage) -> None:
        """追加一条历史消息，满容量时 deque 自动淘汰最旧的一条。"""
        self._history.append(message)

    @property
    def history(self) -> list[ChatMessage]:
        """历史消息快照（按时间正序）。"""
        return list(self._history)

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            name=self.name,
            online_count=self.online_count,
            is_default=self.is_default,
        )

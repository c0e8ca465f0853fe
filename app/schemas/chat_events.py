"""
app.schemas.chat_events
~~~~~~~~~~~~~~~~~~~~~~~

聊天室相关的 Pydantic 模型：领域值对象、上行事件载荷、下行事件数据
以及 REST 响应数据。

线上协议统一使用信封 ``{"event": "<事件名>", "data": <载荷>}``。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# 系统消息的作者占位名
SYSTEM_AUTHOR: str = "System"


# ── 领域值对象 ────────────────────────────────────────────────────────

class Identity(BaseModel):
    """绑定到某个在线连接的 (username, email) 身份。"""

    model_config = ConfigDict(frozen=True)

    username: str = Field(..., description="去除首尾空白后的用户名")
    email: str = Field(..., description="小写化后的邮箱")
    connection_id: str = Field(..., description="所属连接 ID")
    registered_at: datetime = Field(default_factory=datetime.now, description="注册时间")


class ChatMessage(BaseModel):
    """一条已净化的聊天消息，创建后不可变。"""

    model_config = ConfigDict(frozen=True)

    author: str = Field(..., description="作者用户名，系统消息为 System")
    text: str = Field(..., description="净化后的消息文本（受限 HTML 子集）")
    time: str = Field(..., description="人类可读的时间，如 3:04:05 PM")


class RoomMember(BaseModel):
    """房间成员（下行 ``room_users`` 中的单个元素）。"""

    id: str = Field(..., description="连接 ID")
    username: str = Field(..., description="用户名")


# ── 上行事件载荷 ──────────────────────────────────────────────────────
# 字段均允许缺省，缺失/为空由业务层给出具体的错误提示

class RegisterUserPayload(BaseModel):
    """``register_user`` 载荷。"""

    username: str | None = None
    email: str | None = None


class JoinPayload(BaseModel):
    """``join`` / ``reconnect_session`` 载荷。"""

    username: str | None = None
    email: str | None = None
    room: str | None = None


class RoomNamePayload(BaseModel):
    """``create_room`` / ``switch_room`` 载荷。"""

    name: str | None = None


class SendMessagePayload(BaseModel):
    """``send_message`` 载荷。"""

    text: str | None = None


class EventEnvelope(BaseModel):
    """上下行统一信封。"""

    event: str = Field(..., min_length=1, description="事件名")
    data: Any = Field(default=None, description="事件载荷")


# ── 下行事件数据 ──────────────────────────────────────────────────────

class RegistrationSuccessData(BaseModel):
    username: str
    email: str


class JoinSuccessData(BaseModel):
    """``join_success``：进入房间时附带的历史消息快照。"""

    room: str
    username: str
    messages: list[ChatMessage]


class RoomUsersData(BaseModel):
    room: str
    users: list[RoomMember]


class AvailableRoomsData(BaseModel):
    names: list[str]


class RoomCreatedData(BaseModel):
    name: str


# ── REST 响应数据 ─────────────────────────────────────────────────────

class RoomInfoData(BaseModel):
    """房间摘要信息数据类型"""

    name: str = Field(..., description="房间名")
    online_count: int = Field(..., description="当前在线人数")
    is_default: bool = Field(..., description="是否为永久默认房间")


class RoomHistoryData(BaseModel):
    """房间历史消息响应数据。"""

    room: str = Field(..., description="房间名")
    messages: list[ChatMessage] = Field(..., description="消息列表（按时间正序）")
    total: int = Field(..., description="本次返回条数")

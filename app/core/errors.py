"""
app.core.errors
~~~~~~~~~~~~~~~

聊天室业务异常体系。

所有业务异常均可恢复：抛出时保证状态未被修改，由分发层
（``ChatSystem.handle_event``）转换为对应的下行事件回复给调用方。

.. code-block:: text

    ChatError
    ├── ValidationError       → error{text}
    ├── UniquenessConflict
    │   ├── UsernameTakenError → username_taken
    │   └── EmailTakenError    → email_taken
    ├── NotFoundError         → error{text}
    └── AlreadyExistsError    → room_exists
"""
from __future__ import annotations

from typing import Any


class ChatError(Exception):
    """聊天业务异常基类。

    Attributes:
        event: 回复给调用方的下行事件名。
        message: 人类可读的错误描述。
    """

    event: str = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, Any] | None:
        """下行事件的数据体。"""
        return {"text": self.message}


class ValidationError(ChatError):
    """字段缺失或格式非法。"""


class UniquenessConflict(ChatError):
    """用户名或邮箱已被其他在线连接占用。"""

    def payload(self) -> dict[str, Any] | None:
        # 专用信号，不携带数据，客户端据此提示换一个值
        return None


class UsernameTakenError(UniquenessConflict):
    event = "username_taken"

    def __init__(self, username: str) -> None:
        super().__init__(f"Username '{username}' is already taken")
        self.username = username


class EmailTakenError(UniquenessConflict):
    event = "email_taken"

    def __init__(self, email: str) -> None:
        super().__init__(f"Email '{email}' is already registered")
        self.email = email


class NotFoundError(ChatError):
    """引用的房间不存在。"""


class AlreadyExistsError(ChatError):
    """显式创建的房间已存在。"""

    event = "room_exists"

    def __init__(self, name: str) -> None:
        super().__init__(f"Room '{name}' already exists")
        self.name = name

    def payload(self) -> dict[str, Any] | None:
        return None

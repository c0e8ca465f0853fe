"""
app.services.reconnection
~~~~~~~~~~~~~~~~~~~~~~~~~

断线重连处理 —— 根据客户端保存的会话数据（用户名、邮箱、房间）
恢复新连接的身份与房间成员关系。

客户端缓存的会话不可信：每次重连都按一次全新的加入完整校验，
且重连永远不会创建房间。等待超时与 24 小时新鲜度窗口由客户端负责。
"""
from __future__ import annotations

from app.core.errors import NotFoundError
from app.core.logging import get_logger
from app.services.chat_room import ChatRoom
from app.services.presence import PresenceCoordinator

logger = get_logger(__name__)

WELCOME_BACK_TEMPLATE: str = "Welcome back to the {room} room, {username}!"
REJOINED_TEMPLATE: str = "{username} has rejoined the room"


class ReconnectionHandler:
    """``reconnect_session`` 的处理入口，复用 ``PresenceCoordinator`` 的进入房间流程。"""

    def __init__(self, presence: PresenceCoordinator) -> None:
        self.presence = presence

    def reconnect(
        self,
        connection_id: str,
        username: str | None,
        email: str | None,
        room: str | None,
    ) -> ChatRoom:
        """恢复会话并重新进入房间。

        校验顺序：必填字段 → 房间存在 → 邮箱格式与唯一性。
        任何校验失败都不修改状态。

        Raises:
            ValidationError: 字段缺失或邮箱格式非法。
            NotFoundError: 房间已不存在。
            UsernameTakenError: 用户名被其他在线连接占用。
            EmailTakenError: 邮箱被其他在线连接占用。
        """
        clean_username, clean_email, room_name = self.presence.require_fields(username, email, room)

        if not self.presence.directory.has_room(room_name):
            logger.info("重连失败，房间已不存在 | room=%s", room_name)
            raise NotFoundError("Room no longer exists")

        clean_username, clean_email = self.presence.check_identity(
            connection_id, clean_username, clean_email,
        )
        logger.info("会话恢复 | username=%s | room=%s", clean_username, room_name)
        return self.presence.admit(
            connection_id,
            clean_username,
            clean_email,
            room_name,
            welcome_template=WELCOME_BACK_TEMPLATE,
            joined_template=REJOINED_TEMPLATE,
        )

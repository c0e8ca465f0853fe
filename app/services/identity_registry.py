"""
app.services.identity_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

身份注册表 —— 每个在线连接最多持有一个 (username, email) 身份。

用户名和邮箱在整个系统范围内唯一（跨房间），而不是按房间唯一。
唯一性检查总是排除调用方自身当前持有的身份，因此用自己已有的值
重新注册永远不会失败。
"""
from __future__ import annotations

import re

from app.core.errors import EmailTakenError, UsernameTakenError, ValidationError
from app.core.logging import get_logger
from app.schemas.chat_events import Identity

logger = get_logger(__name__)

EMAIL_PATTERN: re.Pattern[str] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class IdentityRegistry:
    """``connection_id → Identity`` 映射的唯一持有者。

    Attributes:
        username_max_length: 用户名截断长度。
    """

    def __init__(self, username_max_length: int = 20) -> None:
        self.username_max_length = username_max_length
        self._identities: dict[str, Identity] = {}

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._identities

    def get(self, connection_id: str) -> Identity | None:
        """返回连接当前持有的身份，不存在时为 None。"""
        return self._identities.get(connection_id)

    # ── 校验 ──────────────────────────────────────────────────────────

    def normalize(self, username: str | None, email: str | None) -> tuple[str, str]:
        """清洗并校验用户名和邮箱。

        用户名去除首尾空白后截断到 ``username_max_length``；
        邮箱去除首尾空白并转小写，再做基础格式校验。

        Raises:
            ValidationError: 字段为空或邮箱格式非法。
        """
        clean_username = (username or "").strip()[: self.username_max_length]
        clean_email = (email or "").strip().lower()

        if not clean_username:
            raise ValidationError("Username is required")
        if not clean_email:
            raise ValidationError("Email is required")
        if not EMAIL_PATTERN.match(clean_email):
            raise ValidationError("Please enter a valid email address")
        return clean_username, clean_email

    def find_by_username(self, username: str, excluding: str | None = None) -> bool:
        """是否有其他在线连接持有该用户名。"""
        return any(
            identity.username == username
            for conn_id, identity in self._identities.items()
            if conn_id != excluding
        )

    def find_by_email(self, email: str, excluding: str | None = None) -> bool:
        """是否有其他在线连接持有该邮箱（大小写不敏感）。"""
        target = email.strip().lower()
        return any(
            identity.email == target
            for conn_id, identity in self._identities.items()
            if conn_id != excluding
        )

    def ensure_available(self, username: str, email: str, excluding: str | None = None) -> None:
        """检查唯一性，用户名先于邮箱。

        Raises:
            UsernameTakenError: 用户名已被其他连接持有。
            EmailTakenError: 邮箱已被其他连接持有。
        """
        if self.find_by_username(username, excluding=excluding):
            raise UsernameTakenError(username)
        if self.find_by_email(email, excluding=excluding):
            raise EmailTakenError(email)

    # ── 变更 ──────────────────────────────────────────────────────────

    def register(self, connection_id: str, username: str | None, email: str | None) -> Identity:
        """为连接注册（或替换）身份。

        失败时不修改任何状态。

        Raises:
            ValidationError: 字段缺失或格式非法。
            UsernameTakenError: 用户名冲突。
            EmailTakenError: 邮箱冲突。
        """
        clean_username, clean_email = self.normalize(username, email)
        self.ensure_available(clean_username, clean_email, excluding=connection_id)

        identity = Identity(
            username=clean_username,
            email=clean_email,
            connection_id=connection_id,
        )
        previous = self._identities.get(connection_id)
        self._identities[connection_id] = identity
        if previous is None:
            logger.info("身份已注册 | username=%s", clean_username)
        elif previous.username != clean_username or previous.email != clean_email:
            logger.info("身份已更新 | %s -> %s", previous.username, clean_username)
        return identity

    def unregister(self, connection_id: str) -> Identity | None:
        """移除连接的身份（幂等）。返回被移除的身份。"""
        identity = self._identities.pop(connection_id, None)
        if identity is not None:
            logger.debug("身份已注销 | username=%s", identity.username)
        return identity

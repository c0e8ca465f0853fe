"""
tests.test_identity_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

身份注册表单元测试：输入清洗、全局唯一性、幂等注销。
"""
from __future__ import annotations

import pytest

from app.core.errors import EmailTakenError, UsernameTakenError, ValidationError
from app.services.identity_registry import IdentityRegistry


class TestNormalize:
    """测试输入清洗与格式校验。"""

    def setup_method(self) -> None:
        self.registry = IdentityRegistry(username_max_length=20)

    def test_trims_and_lowercases(self) -> None:
        """用户名去空白，邮箱去空白并小写化。"""
        assert self.registry.normalize("  alice ", " Alice@Example.COM ") == (
            "alice", "alice@example.com",
        )

    def test_username_truncated(self) -> None:
        """超长用户名截断到 20 个字符。"""
        username, _ = self.registry.normalize("x" * 30, "a@b.co")

        assert username == "x" * 20

    @pytest.mark.parametrize(
        ("username", "email", "message"),
        [
            ("", "a@b.co", "Username is required"),
            ("   ", "a@b.co", "Username is required"),
            (None, "a@b.co", "Username is required"),
            ("alice", "", "Email is required"),
            ("alice", "not-an-email", "Please enter a valid email address"),
            ("alice", "a@b", "Please enter a valid email address"),
            ("alice", "a b@c.de", "Please enter a valid email address"),
        ],
    )
    def test_invalid_input(self, username: str | None, email: str, message: str) -> None:
        """缺失字段或非法邮箱抛出 ValidationError。"""
        with pytest.raises(ValidationError) as exc_info:
            self.registry.normalize(username, email)

        assert exc_info.value.message == message


class TestRegister:
    """测试注册与全局唯一性。"""

    def setup_method(self) -> None:
        self.registry = IdentityRegistry()
        self.registry.register("c1", "alice", "alice@example.com")

    def test_register_stores_identity(self) -> None:
        """注册后可按连接查到身份。"""
        identity = self.registry.get("c1")

        assert identity is not None
        assert identity.username == "alice"
        assert identity.email == "alice@example.com"
        assert identity.connection_id == "c1"
        assert "c1" in self.registry

    def test_username_taken_by_other_connection(self) -> None:
        """其他连接使用相同用户名失败，且不写入。"""
        with pytest.raises(UsernameTakenError):
            self.registry.register("c2", "alice", "other@example.com")

        assert self.registry.get("c2") is None
        assert len(self.registry) == 1

    def test_email_taken_is_case_insensitive(self) -> None:
        """邮箱比较大小写不敏感。"""
        with pytest.raises(EmailTakenError):
            self.registry.register("c2", "bob", "ALICE@example.com")

    def test_username_comparison_is_case_sensitive(self) -> None:
        """用户名按原样比较，仅大小写不同的用户名可以共存。"""
        identity = self.registry.register("c2", "Alice", "other@example.com")

        assert identity.username == "Alice"
        assert len(self.registry) == 2

    def test_username_checked_before_email(self) -> None:
        """用户名与邮箱同时冲突时先报用户名。"""
        with pytest.raises(UsernameTakenError):
            self.registry.register("c2", "alice", "alice@example.com")

    def test_reregister_own_values_succeeds(self) -> None:
        """用自己已有的值重新注册不会失败。"""
        identity = self.registry.register("c1", "alice", "alice@example.com")

        assert identity.username == "alice"
        assert len(self.registry) == 1

    def test_reregister_replaces_identity(self) -> None:
        """同一连接换新值注册会替换旧身份，旧值随即释放。"""
        self.registry.register("c1", "alicia", "alicia@example.com")

        assert self.registry.get("c1").username == "alicia"
        assert not self.registry.find_by_username("alice")
        self.registry.register("c2", "alice", "alice@example.com")
        assert len(self.registry) == 2

    def test_find_excluding_self(self) -> None:
        """查找时可排除指定连接。"""
        assert self.registry.find_by_username("alice")
        assert not self.registry.find_by_username("alice", excluding="c1")
        assert self.registry.find_by_email("Alice@Example.com")
        assert not self.registry.find_by_email("alice@example.com", excluding="c1")

    def test_unregister_is_idempotent(self) -> None:
        """注销两次不报错，第二次返回 None。"""
        assert self.registry.unregister("c1") is not None
        assert self.registry.unregister("c1") is None
        assert len(self.registry) == 0

    def test_no_two_live_identities_share_values(self) -> None:
        """任意注册序列之后，用户名和邮箱都不重复。"""
        attempts = [
            ("c2", "bob", "bob@example.com"),
            ("c3", "bob", "carol@example.com"),
            ("c4", "dave", "BOB@example.com"),
            ("c2", "alice", "x@example.com"),
            ("c5", "erin", "erin@example.com"),
        ]
        for conn_id, username, email in attempts:
            try:
                self.registry.register(conn_id, username, email)
            except (UsernameTakenError, EmailTakenError):
                pass

        identities = [self.registry.get(c) for c in ("c1", "c2", "c3", "c4", "c5")]
        live = [i for i in identities if i is not None]
        assert len({i.username for i in live}) == len(live)
        assert len({i.email for i in live}) == len(live)

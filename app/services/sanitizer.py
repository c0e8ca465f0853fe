"""
app.services.sanitizer
~~~~~~~~~~~~~~~~~~~~~~

消息净化过滤器 —— 把任意用户文本转换为可原样广播的受限 HTML 子集。

只做逐个标签 token 的白名单匹配，不是完整的 HTML 解析器：
不平衡标签、不校验嵌套。输出中不会出现可执行的非白名单标签，
但可能残留未闭合的白名单标签。
"""
from __future__ import annotations

import re

# 允许保留的标签（小写）
ALLOWED_TAGS: frozenset[str] = frozenset({"b", "i", "a"})

# 形如 <tag ...> / </tag> 的片段，group(1) 为标签名
_TAG_PATTERN: re.Pattern[str] = re.compile(r"</?([a-z][a-z0-9]*)\b[^>]*>", re.IGNORECASE)
_HREF_PATTERN: re.Pattern[str] = re.compile(r"""href=["']([^"']*)["']""", re.IGNORECASE)


def _escape(fragment: str) -> str:
    return fragment.replace("<", "&lt;").replace(">", "&gt;")


def _rewrite_tag(match: re.Match[str]) -> str:
    token: str = match.group(0)
    tag: str = match.group(1).lower()

    if tag not in ALLOWED_TAGS:
        return _escape(token)

    if tag == "a" and not token.startswith("</"):
        # 链接统一在新标签页打开，丢弃作者提供的其它属性
        href_match = _HREF_PATTERN.search(token)
        href: str = href_match.group(1) if href_match else "#"
        return f'<a href="{href}" target="_blank" rel="noopener noreferrer">'

    return token


def sanitize(raw: str) -> str:
    """净化一条用户消息。

    Args:
        raw: 用户输入的原始文本。

    Returns:
        只含 ``<b>``、``<i>``、``<a>`` 可执行标签的文本，其余标签被转义。
    """
    return _TAG_PATTERN.sub(_rewrite_tag, raw)

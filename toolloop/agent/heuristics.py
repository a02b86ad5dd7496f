"""
请求启发式 - 从用户请求中识别动作意图和隐含的能力类别
Request heuristics - detects action intent and implied capability categories
in the user's request.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

ACTION_VERBS = (
    "create",
    "add",
    "schedule",
    "book",
    "update",
    "change",
    "modify",
    "move",
    "reschedule",
    "delete",
    "remove",
    "cancel",
    "send",
    "reply",
)

DEFAULT_CATEGORY_KEYWORDS: dict[str, str] = {
    "calendar": r"\b(calendar|meetings?|events?|schedules?|appointments?)\b",
    "email": r"\b(e-?mails?|inbox|mailbox)\b",
    "files": r"\b(files?|documents?|attachments?|pdfs?)\b",
    "web": r"\b(web|online|internet|website)\b",
    "records": r"\b(records?|entries|customers?|contacts?)\b",
}

_ACTION_PATTERN = re.compile(r"\b(" + "|".join(ACTION_VERBS) + r")\b", re.IGNORECASE)
# camelCase、snake_case、点号与连字符分隔的名称片段
_NAME_WORD = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")
_ACTION_WORDS = frozenset(ACTION_VERBS)


def is_action_capability(name: str, mutating: bool | None = None) -> bool:
    """
    能力是否执行修改类动作；显式标记优先，否则看名称中的动作动词
    Whether a capability performs a mutating action. An explicit flag wins;
    otherwise the name is checked for an action verb (``deleteEvent``,
    ``send_email``).
    """
    if mutating is not None:
        return mutating
    return any(word.lower() in _ACTION_WORDS for word in _NAME_WORD.findall(name or ""))


class RequestHeuristics:
    """
    请求启发式
    Request heuristics.

    类别关键词可通过配置 ``heuristics.category_keywords`` 覆盖。
    Category keywords can be overridden through ``heuristics.category_keywords``.
    """

    def __init__(self, category_keywords: Mapping[str, str] | None = None) -> None:
        keywords = DEFAULT_CATEGORY_KEYWORDS if category_keywords is None else category_keywords
        self._patterns: dict[str, re.Pattern[str]] = {}
        for category, pattern in keywords.items():
            try:
                self._patterns[category] = re.compile(pattern, re.IGNORECASE)
            except re.error:
                logger.warning("类别 %s 的关键词正则无效，已忽略: %s", category, pattern)

    def action_verb(self, text: str) -> str | None:
        match = _ACTION_PATTERN.search(text or "")
        return match.group(1).lower() if match else None

    def is_action_request(self, text: str) -> bool:
        """请求是否要求执行修改类动作 / Whether the request asks for a mutating action."""
        return self.action_verb(text) is not None

    def implied_categories(self, text: str) -> list[str]:
        return [c for c, p in self._patterns.items() if p.search(text or "")]

    def missing_categories(
        self,
        text: str,
        registered: Iterable[str],
        invoked: Iterable[str],
    ) -> list[str]:
        """
        请求隐含、已注册但尚未调用过的类别
        Categories the request implies that are registered but not yet invoked.
        """
        registered_set = set(registered)
        invoked_set = set(invoked)
        return [
            c
            for c in self.implied_categories(text)
            if c in registered_set and c not in invoked_set
        ]

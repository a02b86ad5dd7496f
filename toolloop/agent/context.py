"""
上下文构建器 - 把调用记录组装为有界、去重的模型上下文
Context builder - assembles invocation records into a bounded, deduplicated
context for each model call.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from typing import Any

from toolloop.agent.types import ChatMessage, SessionState
from toolloop.capabilities.types import CapabilityInvocation

# 综合阶段伪条目：草稿答案以此名注入，且始终注入
SYNTHESIS_ENTRY = "synthesis"

DEFAULT_RECENCY_WINDOW = 3

_NONE = "(none)"
_SNIPPET_LIMIT = 100
_DIGEST_ITEM_KEYS = ("title", "summary", "subject", "name", "id")


def pretty(value: Any) -> str:
    """稳定的缩进 JSON 输出 / Stable indented JSON rendering."""
    return json.dumps(value, indent=2, ensure_ascii=False, sort_keys=False, default=str)


def recover(text: str) -> Any:
    """``pretty`` 的逆操作 / Inverse of ``pretty``."""
    return json.loads(text)


def _describe_data(data: Any) -> str:
    if isinstance(data, (list, tuple)):
        return f"Found {len(data)} items"
    if isinstance(data, str):
        if len(data) > _SNIPPET_LIMIT:
            return data[:_SNIPPET_LIMIT] + "..."
        return data
    return "Data available"


def _describe_item(item: Any) -> str:
    if isinstance(item, dict):
        label = next((str(item[k]) for k in _DIGEST_ITEM_KEYS if item.get(k)), None)
        extras = [
            f"{k}: {v}"
            for k, v in item.items()
            if k not in _DIGEST_ITEM_KEYS and isinstance(v, (str, int, float))
        ][:3]
        if label and extras:
            return f"{label} ({', '.join(extras)})"
        if label:
            return label
        return json.dumps(item, ensure_ascii=False, default=str)
    return str(item)


def render_results_digest(invocations: Iterable[CapabilityInvocation]) -> str:
    """
    由成功结果生成确定性的纯文本摘要（不经过模型）
    Deterministic plain-text digest of successful results, built without a
    model call.
    """
    sections: list[str] = []
    for inv in invocations:
        if not inv.has_data:
            continue
        data = inv.result.data
        header = f"Results from {inv.capability}:"
        if isinstance(data, (list, tuple)):
            lines = [f"- {_describe_item(item)}" for item in data]
        elif isinstance(data, dict):
            lines = [pretty(data)]
        else:
            lines = [str(data)]
        sections.append("\n".join([header, *lines]))
    if not sections:
        return "No results were returned."
    return "Here is what I found:\n\n" + "\n\n".join(sections)


class ContextBuilder:
    """
    上下文构建器
    Context builder.

    - 每次调用格式化为固定的详情块
    - 某能力名在最近 K 条助手发言中出现过时，不再注入其详情块
    - 单行摘要始终追加，与去重无关
    - 段落顺序固定：USER REQUEST、CHAT HISTORY、INVOCATIONS、INVOCATION SUMMARY

    - each invocation is formatted into a fixed block
    - a block is skipped when its capability name occurs in the last K
      assistant turns
    - a one-line summary is always appended regardless of dedup
    - fixed section order: USER REQUEST, CHAT HISTORY, INVOCATIONS,
      INVOCATION SUMMARY
    """

    def __init__(
        self,
        recency_window: int = DEFAULT_RECENCY_WINDOW,
        always_inject: Sequence[str] = (SYNTHESIS_ENTRY,),
    ) -> None:
        self._recency_window = max(0, recency_window)
        self._always_inject = frozenset(always_inject)

    @property
    def recency_window(self) -> int:
        return self._recency_window

    # ------------------------------------------------------------------
    # formatting
    # ------------------------------------------------------------------

    @staticmethod
    def format_invocation(invocation: CapabilityInvocation) -> str:
        result = invocation.result
        glyph, verb = ("✅", "succeeded") if result.success else ("❌", "failed")
        lines = [
            f"{glyph} {invocation.capability} {verb} ({invocation.duration_ms}ms)",
            "Parameters:",
            pretty(invocation.parameters),
        ]
        if result.data is not None:
            lines.extend(["Result:", pretty(result.data)])
        if result.message:
            lines.append(f"Message: {result.message}")
        if result.error:
            lines.append(f"Error: {result.error}")
        return "\n".join(lines)

    @staticmethod
    def summarize(invocation: CapabilityInvocation) -> str:
        result = invocation.result
        name = invocation.capability
        if not result.success:
            return f"{name} failed ({invocation.duration_ms}ms): {result.error}"
        detail = result.message
        if not detail:
            detail = _describe_data(result.data)
        return f"{name} succeeded ({invocation.duration_ms}ms): {detail}"

    # ------------------------------------------------------------------
    # injection policy
    # ------------------------------------------------------------------

    def should_inject(self, name: str, transcript: Sequence[str]) -> bool:
        if name in self._always_inject:
            return True
        if self._recency_window == 0:
            return True
        pattern = re.compile(rf"(?<![\w.]){re.escape(name)}(?!\w)")
        recent = transcript[-self._recency_window :]
        return not any(pattern.search(turn) for turn in recent)

    def absorb(self, state: SessionState, invocation: CapabilityInvocation) -> bool:
        """
        把一次调用吸收进会话上下文，返回是否注入了详情块
        Fold an invocation into the session context; returns whether the full
        detail block was injected.
        """
        state.summary_lines.append(self.summarize(invocation))
        inject = self.should_inject(invocation.capability, state.transcript)
        if inject:
            block = self.format_invocation(invocation)
            state.detail_blocks.append(block)
            state.transcript.append(block)
        else:
            verb = "succeeded" if invocation.succeeded else "failed"
            state.transcript.append(f"Capability {invocation.capability} {verb}")
        return inject

    # ------------------------------------------------------------------
    # assembly
    # ------------------------------------------------------------------

    @staticmethod
    def format_history(history: Sequence[ChatMessage]) -> str:
        if not history:
            return _NONE
        return "\n".join(
            f"- [{msg.timestamp.isoformat()}] {msg.role.upper()}: {msg.content}"
            for msg in history
        )

    def build(
        self,
        state: SessionState,
        pseudo_entries: Sequence[CapabilityInvocation] = (),
    ) -> str:
        blocks = list(state.detail_blocks)
        for entry in pseudo_entries:
            if self.should_inject(entry.capability, state.transcript):
                blocks.append(self.format_invocation(entry))

        summary = (
            "\n".join(f"{i}. {line}" for i, line in enumerate(state.summary_lines, 1))
            or _NONE
        )
        sections = [
            f"USER REQUEST:\n{state.user_message}",
            f"CHAT HISTORY:\n{self.format_history(state.chat_history)}",
            "INVOCATIONS:\n" + ("\n\n---\n\n".join(blocks) if blocks else _NONE),
            f"INVOCATION SUMMARY:\n{summary}",
        ]
        return "\n\n".join(sections)

"""
补全解析器 - 把模型的自由文本转换为类型化的控制信号
Completion parser - turns free-text model completions into typed control
signals.

这是唯一读取模型原始文本的模块，状态机只消费这里产出的信号。
This is the only module that reads raw model text; the state machine consumes
nothing but the signals produced here.

标记格式 / Marker grammar::

    CLASSIFY <intent>
    EXECUTE <name> PARAMETERS <json object>
    STOP <reason>

大写关键字在任何位置都被识别；非大写关键字只在行首、且带有标记形态时才被识别
（后跟冒号、被 ``**`` 或反引号包裹，或 ``execute <name> PARAMETERS``），
因此 "Stop by the front desk" 这样的普通句子仍是答案文本。
Upper-case keywords are recognised anywhere. Other casings count only at the
start of a line and only in a marker shape: followed by a colon, wrapped in
``**`` or back-ticks, or ``execute <name> PARAMETERS``. A sentence such as
"Stop by the front desk" therefore stays answer text.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)

_WRAP = r"[*`_]*"
_KEYWORDS = ("CLASSIFY", "EXECUTE", "STOP")

# 行首（可带列表符号/引用符号）任意大小写，再由 _marker_shaped 过滤
_LINE_START_MARKER = re.compile(
    rf"(?im)^[ \t>*\-]*{_WRAP}(?P<kw>classify|execute|stop)\b(?P<close>[*`_]*)[ \t]*(?P<colon>:?)"
)
_EXECUTE_SHAPE = re.compile(r"[ \t]+[A-Za-z_][\w.\-]*[ \t]+PARAMETERS\b", re.IGNORECASE)
# 句中仅识别大写
_INLINE_MARKER = re.compile(rf"{_WRAP}\b(?P<kw>CLASSIFY|EXECUTE|STOP)\b{_WRAP}[ \t]*:?")

_NAME = re.compile(r"[\s*`:]*(?P<name>[A-Za-z_][\w.\-]*)")
_PARAMETERS = re.compile(rf"{_WRAP}\bPARAMETERS\b{_WRAP}\s*:?", re.IGNORECASE)

_VERDICT = re.compile(r"FORMAT_(?P<kind>ACCEPTABLE|NEEDS_REFINEMENT)\s*:?", re.IGNORECASE)

_NO_DATA_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bno (?:data|results?|records?|events?|items?|meetings?|matches|entries)"
        r"(?: \w+)? (?:were |was |could be )?(?:found|returned|available)\b",
        r"\b(?:could ?n[o']t|could not|did ?n[o']t|did not|was unable to) find any\b",
        r"\bnothing (?:was )?found\b",
        r"\bfound nothing\b",
        r"\bno matching (?:data|results?|records?|events?|items?)\b",
    )
]

_NO_ACTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bno action (?:was|has been|could be) (?:performed|taken|completed)\b",
        r"\b(?:could not|couldn't|cannot|can't|was unable to|were unable to|"
        r"am unable to|unable to) (?:be )?(?:perform|complete|carry out|do|execute|"
        r"create|add|schedule|book|update|change|modify|move|reschedule|delete|remove|cancel|send|reply)\b",
        r"\baction could not be performed\b",
        r"\b(?:was|were|has been|have been) not performed\b",
        r"\bnot able to (?:perform|complete|carry out)\b",
    )
]


# ----------------------------------------------------------------------
# signals
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ClassifySignal:
    """意图分类（仅提示，不驱动状态转移） / Informational intent classification."""

    intent: str


@dataclass(frozen=True)
class ExecuteSignal:
    """请求调用一个能力 / Request to invoke one capability."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StopSignal:
    """结束调用阶段 / End the invocation phase."""

    reason: str = ""


@dataclass(frozen=True)
class ImplicitAnswer:
    """没有任何标记，整段文本视为最终答案 / No marker: the whole text is an answer."""

    text: str


@dataclass(frozen=True)
class NoActionableSignal:
    """无法据此行动的补全 / A completion that cannot be acted upon."""

    reason: str


ActionSignal = Union[ExecuteSignal, StopSignal, ImplicitAnswer, NoActionableSignal]


@dataclass(frozen=True)
class ParsedCompletion:
    classify: ClassifySignal | None
    action: ActionSignal
    raw: str


@dataclass(frozen=True)
class ValidationVerdict:
    """格式校验结论 / Format validation verdict."""

    acceptable: bool
    feedback: str | None = None


@dataclass(frozen=True)
class _Marker:
    keyword: str
    start: int
    end: int


# ----------------------------------------------------------------------
# helpers
# ----------------------------------------------------------------------


def normalize_name(name: str) -> str:
    """
    规范化能力名：带命名空间的 ``server.tool`` 取最后一段
    Normalise a capability name; a namespaced ``server.tool`` keeps its last
    segment.
    """
    cleaned = name.strip().strip("*`'\"").rstrip(":,.")
    return cleaned.rsplit(".", 1)[-1] if "." in cleaned else cleaned


def extract_json_object(text: str, start: int = 0) -> tuple[str, int] | None:
    """
    从 ``start`` 之后第一个 ``{`` 起按括号配对截取 JSON 对象（感知字符串）
    Extract the JSON object starting at the first ``{`` after ``start`` by
    brace matching; braces inside strings are ignored.

    返回 (对象文本, 结束位置)，括号不配对时返回 None。
    Returns ``(object_text, end_index)`` or None when braces do not balance.
    """
    open_at = text.find("{", start)
    if open_at < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(open_at, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[open_at : i + 1], i + 1
    return None


def _marker_shaped(text: str, match: re.Match[str]) -> bool:
    """
    行首的非大写关键字是否具有标记形态
    Whether a line-start keyword that is not upper-case looks like a marker.
    """
    keyword = match.group("kw")
    if keyword.isupper() or match.group("close") or match.group("colon"):
        return True
    return keyword.lower() == "execute" and _EXECUTE_SHAPE.match(text, match.end("kw")) is not None


def _rest_of_line(text: str, start: int) -> str:
    end = text.find("\n", start)
    line = text[start:] if end < 0 else text[start:end]
    return line.strip().strip("*`").strip()


def claims_no_data(text: str) -> bool:
    """答案是否声称"未找到数据" / Whether an answer claims that no data was found."""
    return any(p.search(text or "") for p in _NO_DATA_PATTERNS)


def states_no_action(text: str) -> bool:
    """答案是否明确说明未执行操作 / Whether an answer states no action was performed."""
    return any(p.search(text or "") for p in _NO_ACTION_PATTERNS)


def parse_verdict(text: str) -> ValidationVerdict:
    """
    解析校验回复；无法识别时视为通过，以保证成本有界
    Parse a validation reply. Unrecognised replies count as acceptable so the
    refinement cost stays bounded.
    """
    match = _VERDICT.search(text or "")
    if match is None:
        logger.debug("校验回复中未找到结论标记，视为通过")
        return ValidationVerdict(acceptable=True)
    if match.group("kind").upper() == "ACCEPTABLE":
        return ValidationVerdict(acceptable=True)
    feedback = text[match.end() :].strip().strip("`").strip()
    return ValidationVerdict(acceptable=False, feedback=feedback or "Response needs refinement.")


# ----------------------------------------------------------------------
# parser
# ----------------------------------------------------------------------


class CompletionParser:
    """
    补全解析器
    Completion parser.

    规则：
    - 第一个 EXECUTE 生效；EXECUTE 与 STOP 同时出现时，以先出现者为准
    - 只有 CLASSIFY 时视为"无可执行信号"
    - 没有任何标记时，整段文本视为隐式答案
    - 参数 JSON 损坏时视为"无可执行信号"，记录警告，不抛异常
    """

    def parse(self, text: str | None) -> ParsedCompletion:
        raw = text or ""
        if not raw.strip():
            return ParsedCompletion(None, NoActionableSignal("empty completion"), raw)

        markers = self._find_markers(raw)
        classify: ClassifySignal | None = None
        for marker in markers:
            if marker.keyword == "CLASSIFY":
                classify = ClassifySignal(intent=_rest_of_line(raw, marker.end))
                break

        actions = [m for m in markers if m.keyword != "CLASSIFY"]
        if not actions:
            if classify is not None:
                return ParsedCompletion(
                    classify, NoActionableSignal("classification only"), raw
                )
            return ParsedCompletion(None, ImplicitAnswer(raw.strip()), raw)

        first = actions[0]
        if first.keyword == "STOP":
            action: ActionSignal = StopSignal(reason=_rest_of_line(raw, first.end))
        else:
            next_start = actions[1].start if len(actions) > 1 else len(raw)
            action = self._parse_execute(raw, first.end, next_start)
        return ParsedCompletion(classify, action, raw)

    @staticmethod
    def _find_markers(text: str) -> list[_Marker]:
        found: dict[int, _Marker] = {}
        for pattern in (_LINE_START_MARKER, _INLINE_MARKER):
            for match in pattern.finditer(text):
                kw_start = match.start("kw")
                if kw_start in found:
                    continue
                if pattern is _LINE_START_MARKER and not _marker_shaped(text, match):
                    continue
                found[kw_start] = _Marker(match.group("kw").upper(), kw_start, match.end())
        return sorted(found.values(), key=lambda m: m.start)

    @staticmethod
    def _parse_execute(text: str, start: int, limit: int) -> ActionSignal:
        name_match = _NAME.match(text, start)
        if name_match is None:
            logger.warning("EXECUTE 标记后缺少能力名")
            return NoActionableSignal("EXECUTE without a capability name")
        name = name_match.group("name").rstrip(".")

        params_match = _PARAMETERS.search(text, name_match.end(), limit)
        if params_match is None:
            return ExecuteSignal(name=name, parameters={})

        extracted = extract_json_object(text, params_match.end())
        if extracted is None:
            logger.warning("能力 %s 的 PARAMETERS 不是完整的 JSON 对象", name)
            return NoActionableSignal(f"malformed parameters for {name}")
        body, _ = extracted
        try:
            parameters = json.loads(body)
        except json.JSONDecodeError as exc:
            logger.warning("解析能力 %s 的参数失败: %s", name, exc)
            return NoActionableSignal(f"malformed parameters for {name}: {exc.msg}")
        if not isinstance(parameters, dict):
            return NoActionableSignal(f"parameters for {name} are not an object")
        return ExecuteSignal(name=name, parameters=parameters)

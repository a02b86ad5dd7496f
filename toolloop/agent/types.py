"""
编排类型 - 请求、步骤、会话状态与结果
Orchestration types - requests, steps, session state and results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from toolloop.capabilities.types import CapabilityInvocation

DEFAULT_MAX_STEPS = 10
DEFAULT_MAX_CALLS = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepType(str, Enum):
    """步骤类型 / Step type."""

    ANALYSIS = "analysis"
    INVOCATION = "invocation"
    VALIDATION = "validation"
    SYNTHESIS = "synthesis"


class LoopState(str, Enum):
    """状态机状态 / State machine states."""

    START = "start"
    ANALYZE = "analyze"
    INVOKE = "invoke"
    VALIDATE = "validate"
    SYNTHESIZE = "synthesize"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class Budgets:
    """
    执行预算 - 步骤数与调用数的硬上限
    Execution budgets - hard ceilings on step and call counts.
    """

    max_steps: int = DEFAULT_MAX_STEPS
    max_calls: int = DEFAULT_MAX_CALLS

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {self.max_steps}")
        if self.max_calls < 0:
            raise ValueError(f"max_calls must be >= 0, got {self.max_calls}")


@dataclass(frozen=True)
class ChatMessage:
    """调用方提供的历史消息 / A caller-supplied history message."""

    role: str
    content: str
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        raw_ts = data.get("timestamp")
        if isinstance(raw_ts, datetime):
            ts = raw_ts
        elif isinstance(raw_ts, (int, float)):
            # 毫秒时间戳
            seconds = raw_ts / 1000 if raw_ts > 1e11 else raw_ts
            ts = datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif isinstance(raw_ts, str) and raw_ts:
            ts = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
        else:
            ts = utcnow()
        role = str(data.get("role") or data.get("type") or "user")
        return cls(role=role, content=str(data.get("content", "")), timestamp=ts)


@dataclass
class OrchestrationStep:
    """
    编排步骤 - 一次原子的、被记录的循环工作
    Orchestration step - one atomic, recorded unit of loop work.
    """

    id: int
    type: StepType
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    invocation: CapabilityInvocation | None = None
    reasoning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.invocation is not None:
            out["invocation"] = self.invocation.to_dict()
        if self.reasoning:
            out["reasoning"] = self.reasoning
        return out


@dataclass(frozen=True)
class OrchestrationRequest:
    """顶层请求 / Top-level request."""

    user_message: str
    chat_history: tuple[ChatMessage, ...] = ()
    budgets: Budgets = field(default_factory=Budgets)
    development_mode: bool = False


@dataclass
class OrchestrationResult:
    """顶层响应 / Top-level response."""

    final_answer: str
    steps: list[OrchestrationStep]
    invocations: list[CapabilityInvocation]
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "final_answer": self.final_answer,
            "steps": [s.to_dict() for s in self.steps],
            "invocations": [i.to_dict() for i in self.invocations],
            "success": self.success,
        }
        if self.error:
            out["error"] = self.error
        return out


class StepBudgetExceeded(RuntimeError):
    """记录步骤超出上限（循环逻辑错误） / Step ceiling breached (loop logic error)."""


@dataclass
class SessionState:
    """
    会话状态 - 每次 run() 新建，从不跨调用共享
    Session state - created per ``run()`` call and never shared across calls.

    ``steps`` 与 ``invocations`` 只追加。
    ``steps`` and ``invocations`` are append-only.
    """

    user_message: str
    chat_history: tuple[ChatMessage, ...]
    budgets: Budgets
    steps: list[OrchestrationStep] = field(default_factory=list)
    invocations: list[CapabilityInvocation] = field(default_factory=list)
    # 助手侧的对话记录，用于近期去重
    transcript: list[str] = field(default_factory=list)
    detail_blocks: list[str] = field(default_factory=list)
    summary_lines: list[str] = field(default_factory=list)
    intent: str | None = None
    nudge: str | None = None
    draft_hint: str | None = None
    forced_directive_used: bool = False
    model_calls: int = 0
    state: LoopState = LoopState.START

    @classmethod
    def from_request(cls, request: OrchestrationRequest) -> SessionState:
        return cls(
            user_message=request.user_message,
            chat_history=tuple(request.chat_history),
            budgets=request.budgets,
        )

    @property
    def calls_made(self) -> int:
        return len(self.invocations)

    @property
    def calls_remaining(self) -> int:
        return max(0, self.budgets.max_calls - self.calls_made)

    @property
    def steps_remaining(self) -> int:
        return max(0, self.budgets.max_steps - len(self.steps))

    def can_analyze(self) -> bool:
        """
        还能继续分析吗：始终为综合步骤保留一个位置
        Whether another ANALYZE may run; one slot is always kept for synthesis.
        """
        return (
            len(self.steps) < self.budgets.max_steps - 1
            and self.calls_made < self.budgets.max_calls
        )

    def record_step(
        self,
        step_type: StepType,
        content: str,
        invocation: CapabilityInvocation | None = None,
        reasoning: str | None = None,
    ) -> OrchestrationStep:
        if len(self.steps) >= self.budgets.max_steps:
            raise StepBudgetExceeded(
                f"step budget of {self.budgets.max_steps} exhausted"
            )
        step = OrchestrationStep(
            id=len(self.steps) + 1,
            type=step_type,
            content=content,
            invocation=invocation,
            reasoning=reasoning,
        )
        self.steps.append(step)
        return step

    def record_invocation(self, invocation: CapabilityInvocation) -> None:
        if self.calls_made >= self.budgets.max_calls:
            raise StepBudgetExceeded(
                f"call budget of {self.budgets.max_calls} exhausted"
            )
        self.invocations.append(invocation)

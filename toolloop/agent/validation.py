"""
校验策略 - 对草稿答案做一次有界的自检
Validation policy - one bounded self-check of the draft answer.

先执行确定性检查（动作声明、"未找到数据"声明），全部通过后才可选地
请求模型判定格式。无论哪种失败，调用方最多只重新综合一次。
Deterministic checks (action claims, "no data found" claims) run first; only
when they pass is the model optionally asked to judge the format. Whatever
fails, the caller re-synthesizes at most once.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Collection, Sequence
from dataclasses import dataclass, field

from toolloop.agent import parser
from toolloop.agent.context import render_results_digest
from toolloop.agent.heuristics import is_action_capability
from toolloop.agent.prompts import validation_prompt
from toolloop.capabilities.types import CapabilityInvocation

logger = logging.getLogger(__name__)

NO_ACTION_NOTICE = (
    "No action was performed: none of the available capabilities carried out "
    "this request."
)

CompleteFn = Callable[[str], Awaitable[str]]


@dataclass
class PolicyOutcome:
    """校验结果 / Validation outcome."""

    acceptable: bool
    feedback: str | None = None
    issues: list[str] = field(default_factory=list)
    model_checked: bool = False

    def describe(self) -> str:
        if self.acceptable:
            return "FORMAT_ACCEPTABLE"
        return f"FORMAT_NEEDS_REFINEMENT: {self.feedback}"


def _all_succeeded_with_data(invocations: Sequence[CapabilityInvocation]) -> bool:
    return bool(invocations) and all(inv.has_data for inv in invocations)


def _action_performed(
    invocations: Sequence[CapabilityInvocation],
    action_capabilities: Collection[str] | None,
) -> bool:
    """
    是否有修改类能力成功执行；查询类能力的成功不算
    Whether a mutating capability succeeded. A successful lookup does not count.

    ``action_capabilities`` 为 None 时按名称推断。
    When ``action_capabilities`` is None the names are inspected instead.
    """
    for inv in invocations:
        if not inv.succeeded:
            continue
        if action_capabilities is None:
            if is_action_capability(inv.capability):
                return True
        elif inv.capability in action_capabilities:
            return True
    return False


class ValidationPolicy:
    """
    校验策略
    Validation policy.

    ``enabled=False`` 跳过全部检查（守卫修正仍然生效）；
    ``model_check=False`` 只执行确定性检查。
    ``enabled=False`` skips every check (the guard fix-ups still apply);
    ``model_check=False`` runs the deterministic checks only.
    """

    def __init__(self, enabled: bool = True, model_check: bool = True) -> None:
        self.enabled = enabled
        self.model_check = model_check

    def deterministic_issues(
        self,
        draft: str,
        invocations: Sequence[CapabilityInvocation],
        action_request: bool,
        action_capabilities: Collection[str] | None = None,
    ) -> list[str]:
        issues = []
        if not draft.strip():
            issues.append("The answer is empty.")
        if (
            action_request
            and not _action_performed(invocations, action_capabilities)
            and not parser.states_no_action(draft)
        ):
            issues.append(
                "The user asked for an action but no action capability succeeded; "
                "state explicitly that no action was performed."
            )
        if _all_succeeded_with_data(invocations) and parser.claims_no_data(draft):
            issues.append(
                "The answer claims no data was found although the capabilities "
                "returned results; report those results."
            )
        return issues

    async def check(
        self,
        *,
        user_message: str,
        draft: str,
        invocations: Sequence[CapabilityInvocation],
        action_request: bool,
        complete: CompleteFn,
        action_capabilities: Collection[str] | None = None,
    ) -> PolicyOutcome:
        if not self.enabled:
            return PolicyOutcome(acceptable=True)

        issues = self.deterministic_issues(
            draft, invocations, action_request, action_capabilities
        )
        if issues:
            logger.debug("草稿未通过确定性检查: %s", issues)
            return PolicyOutcome(acceptable=False, feedback=" ".join(issues), issues=issues)

        if not self.model_check:
            return PolicyOutcome(acceptable=True)

        reply = await complete(validation_prompt(user_message, draft))
        verdict = parser.parse_verdict(reply)
        return PolicyOutcome(
            acceptable=verdict.acceptable,
            feedback=verdict.feedback,
            model_checked=True,
        )

    @staticmethod
    def apply_guards(
        answer: str,
        invocations: Sequence[CapabilityInvocation],
        action_request: bool,
        action_capabilities: Collection[str] | None = None,
    ) -> str:
        """
        最终答案的确定性修正（不再调用模型）
        Deterministic fix-ups of the final answer, without another model call.
        """
        if _all_succeeded_with_data(invocations) and parser.claims_no_data(answer):
            logger.info("最终答案错误地声称未找到数据，改用结果摘要")
            answer = render_results_digest(invocations)
        if (
            action_request
            and not _action_performed(invocations, action_capabilities)
            and not parser.states_no_action(answer)
        ):
            answer = f"{answer.rstrip()}\n\n{NO_ACTION_NOTICE}" if answer.strip() else NO_ACTION_NOTICE
        return answer

"""
编排运行器 - 驱动 分析 -> 调用 -> 校验 -> 综合 的状态机
Orchestration runner - drives the Analyze -> Invoke -> Validate -> Synthesize
state machine.

START -> ANALYZE -> (INVOKE -> ANALYZE)* -> VALIDATE -> SYNTHESIZE -> DONE
任何状态都可能进入 ERROR。
ERROR is reachable from every state.

预算规则：每个记录的步骤都计入 ``max_steps``，并始终为综合步骤保留一个位置。
每次 ANALYZE 恰好记录一个步骤：引出调用时记为 ``invocation`` 步骤（分析文本
保存在 ``reasoning``），否则记为 ``analysis`` 步骤。
Budget rule: every recorded step counts against ``max_steps`` and one slot is
always reserved for the synthesis step. Each ANALYZE records exactly one
step: an ``invocation`` step when it leads to an INVOKE (the analysis text is
kept as its ``reasoning``), otherwise an ``analysis`` step.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from toolloop.agent import prompts
from toolloop.agent.context import SYNTHESIS_ENTRY, ContextBuilder
from toolloop.agent.heuristics import RequestHeuristics, is_action_capability
from toolloop.agent.parser import (
    CompletionParser,
    ExecuteSignal,
    ImplicitAnswer,
    NoActionableSignal,
    StopSignal,
    normalize_name,
)
from toolloop.agent.progress import ProgressReporter, ProgressSink
from toolloop.agent.types import (
    LoopState,
    OrchestrationRequest,
    OrchestrationResult,
    SessionState,
    StepType,
)
from toolloop.agent.validation import PolicyOutcome, ValidationPolicy
from toolloop.capabilities.registry import CapabilityRegistry
from toolloop.capabilities.types import (
    CapabilityDescriptor,
    CapabilityInvocation,
    CapabilityResult,
)
from toolloop.config.settings import OrchestratorSettings
from toolloop.errors import CompletionError
from toolloop.intellect.base import CompletionOptions, CompletionProvider

logger = logging.getLogger(__name__)

FAILURE_MESSAGE = "I encountered an error while processing your request. Please try again."


class Orchestrator:
    """
    编排器 - 把自然语言请求转化为有界的能力调用序列和综合答案
    Orchestrator - turns a natural-language request into a bounded sequence of
    capability invocations and a synthesized answer.

    编排器本身无状态，可被并发调用；每次 ``run`` 拥有独立的 SessionState。
    The orchestrator itself is stateless and may be called concurrently; every
    ``run`` owns an isolated SessionState.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        registry: CapabilityRegistry,
        *,
        model_id: str | None = None,
        settings: OrchestratorSettings | None = None,
        validation: ValidationPolicy | None = None,
        parser: CompletionParser | None = None,
        context_builder: ContextBuilder | None = None,
        heuristics: RequestHeuristics | None = None,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._settings = settings or OrchestratorSettings()
        self._model_id = model_id or self._settings.model or None
        self._validation = validation or ValidationPolicy(
            enabled=self._settings.validation_enabled,
            model_check=self._settings.validation_model_check,
        )
        self._parser = parser or CompletionParser()
        self._context = context_builder or ContextBuilder(
            recency_window=self._settings.recency_window
        )
        self._heuristics = heuristics or RequestHeuristics(self._settings.category_keywords)
        self._options = CompletionOptions(
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
        )

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        request: OrchestrationRequest,
        progress: ProgressSink | Callable[[str], None] | None = None,
    ) -> OrchestrationResult:
        """
        执行一次完整的编排
        Run one complete orchestration.

        基础设施级错误在这里被转换为终止性失败，并返回部分轨迹。
        Infrastructure failures are converted into a terminal failure here,
        and the partial trace is still returned.
        """
        state = SessionState.from_request(request)
        reporter = ProgressReporter(progress)

        try:
            answer = await self._drive(state, reporter)
        except Exception as exc:
            logger.exception("编排失败（状态=%s）", state.state.value)
            failed_in = state.state
            state.state = LoopState.ERROR
            detail = str(exc) or exc.__class__.__name__
            reporter.emit(f"❌ Orchestration failed during {failed_in.value}: {detail}")
            return OrchestrationResult(
                final_answer=FAILURE_MESSAGE,
                steps=list(state.steps),
                invocations=list(state.invocations),
                success=False,
                error=detail,
            )

        if request.development_mode:
            steps = list(state.steps)
        else:
            steps = [s for s in state.steps if s.type is StepType.SYNTHESIS]
        return OrchestrationResult(
            final_answer=answer,
            steps=steps,
            invocations=list(state.invocations),
            success=True,
        )

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------

    async def _drive(self, state: SessionState, reporter: ProgressReporter) -> str:
        budgets = state.budgets
        reporter.emit(
            f"🚀 Starting orchestration (max {budgets.max_steps} steps, "
            f"{budgets.max_calls} capability calls)"
        )
        catalog = await self._registry.list_capabilities()
        action_request = self._heuristics.is_action_request(state.user_message)
        action_capabilities = frozenset(
            d.name for d in catalog if is_action_capability(d.name, d.mutating)
        )

        await self._analyze_loop(state, reporter, catalog)
        outcome, draft, folded = await self._validate(
            state, reporter, action_request, action_capabilities
        )
        answer = await self._synthesize(
            state, reporter, action_request, action_capabilities, outcome, draft, folded
        )

        state.state = LoopState.DONE
        reporter.emit(
            f"✅ Orchestration complete ({len(state.steps)} steps, "
            f"{state.calls_made} capability calls)"
        )
        return answer

    async def _analyze_loop(
        self,
        state: SessionState,
        reporter: ProgressReporter,
        catalog: Sequence[CapabilityDescriptor],
    ) -> None:
        catalog_text = prompts.format_catalog(catalog)

        while state.can_analyze():
            state.state = LoopState.ANALYZE
            directive = None
            if not state.forced_directive_used and self._is_last_analyze(state):
                directive = self._forced_directive(state, reporter, catalog)

            prompt = prompts.analysis_prompt(
                self._context.build(state),
                catalog_text,
                calls_remaining=state.calls_remaining,
                intent=state.intent,
                nudge=state.nudge,
                directive=directive,
            )
            state.nudge = None
            text = await self._complete(state, prompt)
            parsed = self._parser.parse(text)
            if parsed.classify is not None:
                state.intent = parsed.classify.intent
                reporter.emit(f"🧭 Request classified as: {state.intent}")

            action = parsed.action
            if isinstance(action, ExecuteSignal):
                await self._invoke(state, reporter, action, reasoning=text, catalog=catalog)
                continue

            state.transcript.append(text)
            if isinstance(action, NoActionableSignal):
                state.record_step(
                    StepType.ANALYSIS,
                    text.strip() or "(empty completion)",
                    reasoning=f"No actionable signal: {action.reason}",
                )
                reporter.emit(f"⚠️ No actionable signal ({action.reason}); retrying analysis")
                directive = None
                if not state.forced_directive_used and state.can_analyze():
                    directive = self._forced_directive(state, reporter, catalog)
                state.nudge = directive or prompts.NO_ACTION_NUDGE.format(reason=action.reason)
                continue

            if isinstance(action, StopSignal):
                reasoning = f"STOP: {action.reason}" if action.reason else "STOP"
            else:
                reasoning = "Implicit answer (no marker)"
            state.record_step(StepType.ANALYSIS, text.strip(), reasoning=reasoning)

            if not state.forced_directive_used and state.can_analyze():
                directive = self._forced_directive(state, reporter, catalog)
                if directive is not None:
                    state.nudge = directive
                    continue

            if isinstance(action, ImplicitAnswer):
                state.draft_hint = action.text
                reporter.emit("💬 Model answered directly; moving to validation")
            else:
                reporter.emit(f"🛑 Model stopped: {action.reason or 'no reason given'}")
            return

        reporter.emit("⏱️ Budget exhausted; moving to validation")

    async def _invoke(
        self,
        state: SessionState,
        reporter: ProgressReporter,
        signal: ExecuteSignal,
        reasoning: str,
        catalog: Sequence[CapabilityDescriptor],
    ) -> CapabilityInvocation:
        state.state = LoopState.INVOKE
        name = await self._resolve_name(signal.name, catalog)
        reporter.emit(f"🔧 Invoking {name}")

        started_at = time.time()
        t0 = time.monotonic()
        result = await self._registry.invoke(name, signal.parameters)
        duration_ms = int((time.monotonic() - t0) * 1000)
        invocation = CapabilityInvocation(
            capability=name,
            parameters=dict(signal.parameters),
            result=result,
            started_at=started_at,
            ended_at=time.time(),
            duration_ms=duration_ms,
        )

        state.record_invocation(invocation)
        summary = self._context.summarize(invocation)
        state.record_step(StepType.INVOCATION, summary, invocation=invocation, reasoning=reasoning)
        self._context.absorb(state, invocation)
        state.transcript.append(reasoning)

        if invocation.succeeded:
            reporter.emit(f"✅ {summary}")
        else:
            reporter.emit(f"❌ {summary}")
        return invocation

    async def _validate(
        self,
        state: SessionState,
        reporter: ProgressReporter,
        action_request: bool,
        action_capabilities: frozenset[str],
    ) -> tuple[PolicyOutcome, str, str | None]:
        state.state = LoopState.VALIDATE
        reporter.emit("📝 Drafting answer")
        draft = await self._complete(
            state,
            prompts.draft_prompt(
                self._context.build(state),
                action_request=action_request,
                draft_hint=state.draft_hint,
            ),
        )

        outcome = await self._validation.check(
            user_message=state.user_message,
            draft=draft,
            invocations=state.invocations,
            action_request=action_request,
            complete=lambda prompt: self._complete(state, prompt),
            action_capabilities=action_capabilities,
        )
        verdict = outcome.describe()
        folded: str | None = None
        if len(state.steps) < state.budgets.max_steps - 1:
            state.record_step(StepType.VALIDATION, verdict, reasoning="Self-check of the draft answer")
        else:
            folded = verdict

        if outcome.acceptable:
            reporter.emit("🔍 Draft answer passed validation")
        else:
            reporter.emit(f"🔍 Draft answer needs refinement: {outcome.feedback}")
        return outcome, draft, folded

    async def _synthesize(
        self,
        state: SessionState,
        reporter: ProgressReporter,
        action_request: bool,
        action_capabilities: frozenset[str],
        outcome: PolicyOutcome,
        draft: str,
        folded: str | None,
    ) -> str:
        state.state = LoopState.SYNTHESIZE
        answer = draft
        if not outcome.acceptable:
            reporter.emit("🔁 Refining answer")
            now = time.time()
            pseudo = CapabilityInvocation(
                capability=SYNTHESIS_ENTRY,
                parameters={},
                result=CapabilityResult.ok(message=draft),
                started_at=now,
                ended_at=now,
                duration_ms=0,
            )
            context = self._context.build(state, pseudo_entries=[pseudo])
            refined = await self._complete(
                state, prompts.refinement_prompt(context, outcome.feedback or "")
            )
            answer = refined if refined.strip() else draft

        answer = self._validation.apply_guards(
            answer, state.invocations, action_request, action_capabilities
        )

        reasoning = "Synthesis of recorded invocations"
        if folded:
            reasoning += f" (validation: {folded})"
        state.record_step(StepType.SYNTHESIS, answer, reasoning=reasoning)
        return answer

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _complete(self, state: SessionState, prompt: str) -> str:
        """
        调用模型，失败时恰好重试 ``completion_retries`` 次
        Call the model; a failure is retried exactly ``completion_retries`` times.
        """
        attempts = self._settings.completion_retries + 1
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            state.model_calls += 1
            try:
                return await self._provider.complete(prompt, self._model_id, self._options)
            except Exception as exc:
                last_exc = exc
                logger.warning("模型调用失败（第 %d/%d 次）: %s", attempt, attempts, exc)
        raise CompletionError(
            f"completion failed after {attempts} attempt(s): {last_exc}",
            provider_id=self._provider.provider_id,
            attempts=attempts,
        ) from last_exc

    async def _resolve_name(
        self, raw_name: str, catalog: Sequence[CapabilityDescriptor]
    ) -> str:
        if await self._registry.resolve(raw_name) is not None:
            return raw_name
        short = normalize_name(raw_name)
        if short != raw_name and await self._registry.resolve(short) is not None:
            return short
        lowered = short.lower()
        for descriptor in catalog:
            if descriptor.name.lower() == lowered:
                return descriptor.name
        return raw_name

    @staticmethod
    def _is_last_analyze(state: SessionState) -> bool:
        budgets = state.budgets
        return (
            len(state.steps) + 1 >= budgets.max_steps - 1
            or state.calls_made + 1 >= budgets.max_calls
        )

    def _forced_directive(
        self,
        state: SessionState,
        reporter: ProgressReporter,
        catalog: Sequence[CapabilityDescriptor],
    ) -> str | None:
        """
        请求隐含了已注册却未调用的类别时，生成一次性的强制指令
        Build the once-per-session directive when the request implies a
        registered category that has not been invoked yet.
        """
        categories_of = {d.name: d.category for d in catalog}
        invoked = {
            categories_of[inv.capability]
            for inv in state.invocations
            if inv.capability in categories_of
        }
        missing = self._heuristics.missing_categories(
            state.user_message,
            registered=categories_of.values(),
            invoked=invoked,
        )
        if not missing:
            return None

        state.forced_directive_used = True
        names = [d.name for d in catalog if d.category in missing]
        reporter.emit(
            f"⚠️ Request implies {', '.join(missing)} but nothing was invoked; "
            "directing the model to act"
        )
        return prompts.forced_directive(missing, names)

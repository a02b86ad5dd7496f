"""Tests for the orchestration state machine."""

from __future__ import annotations

import asyncio
import json
import re

import pytest

from toolloop.agent.parser import claims_no_data, states_no_action
from toolloop.agent.progress import BufferedProgressSink
from toolloop.agent.runner import FAILURE_MESSAGE, Orchestrator
from toolloop.agent.types import Budgets, OrchestrationRequest, StepType
from toolloop.agent.validation import NO_ACTION_NOTICE
from toolloop.capabilities.registry import CapabilityRegistry
from toolloop.capabilities.types import CapabilityDescriptor, CapabilityResult
from toolloop.config.settings import OrchestratorSettings
from toolloop.intellect.base import CompletionOptions, CompletionProvider

from .conftest import (
    MEETINGS,
    REFINEMENT_HEADER,
    SYNTHESIS_HEADER,
    VALIDATION_HEADER,
    ScriptedProvider,
    search_events_descriptor,
)

MEETINGS_QUESTION = "what meetings do I have next week"
EXECUTE_SEARCH = 'EXECUTE searchEvents PARAMETERS {"query": "next week"}'


def dev_request(message: str = MEETINGS_QUESTION, **budgets) -> OrchestrationRequest:
    return OrchestrationRequest(
        user_message=message,
        budgets=Budgets(**budgets),
        development_mode=True,
    )


def step_types(result) -> list[StepType]:
    return [s.type for s in result.steps]


# =============================================================================
# Scenarios
# =============================================================================


class TestScenarios:
    async def test_meetings_lookup(self, calendar_registry):
        provider = ScriptedProvider(
            analysis=[f"CLASSIFY calendar lookup\n{EXECUTE_SEARCH}", "STOP found both meetings"],
            drafts=["You have two meetings next week: Design review and Budget sync."],
        )
        orchestrator = Orchestrator(provider, calendar_registry)

        result = await orchestrator.run(dev_request())

        assert result.success
        assert result.error is None
        assert len(result.invocations) == 1
        invocation_steps = [s for s in result.steps if s.type is StepType.INVOCATION]
        assert invocation_steps
        assert calendar_registry.get(invocation_steps[0].invocation.capability).category == "calendar"
        assert result.steps[-1].type is StepType.SYNTHESIS
        assert "Design review" in result.final_answer
        assert "Budget sync" in result.final_answer
        assert step_types(result) == [
            StepType.INVOCATION,
            StepType.ANALYSIS,
            StepType.VALIDATION,
            StepType.SYNTHESIS,
        ]
        assert [s.id for s in result.steps] == [1, 2, 3, 4]

    async def test_action_without_matching_capability(self, registry):
        registry.register(
            CapabilityDescriptor(name="webSearch", description="Search the web", category="web"),
            lambda p: [],
        )
        provider = ScriptedProvider(
            analysis=["STOP there is no capability that can delete calendar events"],
            drafts=["Event X has been deleted."],
            refinements=["I could not delete event X because no calendar capability is available."],
        )
        result = await Orchestrator(provider, registry).run(dev_request("delete event X"))

        assert result.success
        assert result.invocations == []
        assert states_no_action(result.final_answer)
        assert "has been deleted" not in result.final_answer

    async def test_lookup_alone_does_not_count_as_the_action(self, registry):
        registry.register(search_events_descriptor(), lambda p: [{"title": "X"}])
        provider = ScriptedProvider(
            analysis=['EXECUTE searchEvents PARAMETERS {"query": "X"}', "STOP"],
            drafts=["Event X has been deleted."],
            refinements=["Event X has been deleted."],
        )
        result = await Orchestrator(provider, registry).run(dev_request("delete event X"))

        assert [inv.capability for inv in result.invocations] == ["searchEvents"]
        assert result.invocations[0].succeeded
        assert len(provider.prompts_of(REFINEMENT_HEADER)) == 1
        assert result.final_answer.endswith(NO_ACTION_NOTICE)

    async def test_successful_delete_is_confirmed(self, registry):
        registry.register(search_events_descriptor(), lambda p: [{"title": "X", "id": 7}])
        registry.register(
            CapabilityDescriptor(name="deleteEvent", description="Delete an event", category="calendar"),
            lambda p: CapabilityResult.ok(message="deleted"),
        )
        provider = ScriptedProvider(
            analysis=[
                'EXECUTE searchEvents PARAMETERS {"query": "X"}',
                'EXECUTE deleteEvent PARAMETERS {"id": 7}',
                "STOP",
            ],
            drafts=["Event X has been deleted."],
        )
        result = await Orchestrator(provider, registry).run(dev_request("delete event X"))

        assert result.final_answer == "Event X has been deleted."
        assert provider.prompts_of(REFINEMENT_HEADER) == []

    async def test_explicit_mutating_flag_is_respected(self, registry):
        registry.register(
            CapabilityDescriptor(
                name="eventsPurge", description="Purge events", category="calendar", mutating=True
            ),
            lambda p: CapabilityResult.ok(message="purged"),
        )
        provider = ScriptedProvider(
            analysis=["EXECUTE eventsPurge PARAMETERS {}", "STOP"],
            drafts=["Removed all events."],
        )
        result = await Orchestrator(provider, registry).run(dev_request("remove my events"))
        assert result.final_answer == "Removed all events."

    async def test_action_notice_added_when_model_never_admits_it(self, registry):
        provider = ScriptedProvider(
            analysis=["STOP nothing to do"],
            drafts=["Done!"],
            refinements=["All done!"],
        )
        result = await Orchestrator(provider, registry).run(dev_request("cancel my 3pm"))

        assert result.success
        assert "No action was performed" in result.final_answer

    async def test_budget_force_terminates(self, calendar_registry):
        provider = ScriptedProvider(default_analysis=EXECUTE_SEARCH)
        orchestrator = Orchestrator(provider, calendar_registry)

        result = await orchestrator.run(dev_request(max_steps=2, max_calls=1))

        assert result.success
        assert len(result.invocations) == 1
        assert len(result.steps) <= 2
        assert step_types(result) == [StepType.INVOCATION, StepType.SYNTHESIS]
        assert len(provider.analysis_prompts) == 1
        # 校验结论合并进综合步骤
        assert "validation: FORMAT_ACCEPTABLE" in result.steps[-1].reasoning

    async def test_throwing_executor_is_contained(self, registry):
        def broken(params):
            raise RuntimeError("calendar backend offline")

        registry.register(
            CapabilityDescriptor(name="searchEvents", description="Search", category="calendar"),
            broken,
        )
        provider = ScriptedProvider(
            analysis=[EXECUTE_SEARCH, "STOP the calendar is unavailable"],
            drafts=["Your calendar could not be reached right now, please try again later."],
        )
        result = await Orchestrator(provider, registry).run(dev_request())

        assert result.success
        assert result.invocations[0].result.success is False
        assert result.invocations[0].result.error == "calendar backend offline"
        assert step_types(result)[:2] == [StepType.INVOCATION, StepType.ANALYSIS]
        assert len(provider.analysis_prompts) == 2
        assert "❌ searchEvents failed" in provider.analysis_prompts[1]

    async def test_unknown_capability(self, calendar_registry):
        provider = ScriptedProvider(
            analysis=["EXECUTE unknownTool PARAMETERS {}", EXECUTE_SEARCH, "STOP done"],
            drafts=["Design review and Budget sync."],
        )
        result = await Orchestrator(provider, calendar_registry).run(dev_request())

        assert result.success
        unknown = result.invocations[0]
        assert unknown.capability == "unknownTool"
        assert not unknown.result.success
        assert "not found" in unknown.result.error
        assert result.invocations[1].succeeded


# =============================================================================
# Budget properties
# =============================================================================


@pytest.mark.parametrize("max_steps", [1, 2, 3, 5, 8])
@pytest.mark.parametrize("max_calls", [0, 1, 2, 4])
async def test_budgets_are_never_exceeded(calendar_registry, max_steps, max_calls):
    provider = ScriptedProvider(default_analysis=EXECUTE_SEARCH)
    result = await Orchestrator(provider, calendar_registry).run(
        dev_request(max_steps=max_steps, max_calls=max_calls)
    )

    assert result.success
    assert len(result.invocations) <= max_calls
    assert len(result.steps) <= max_steps
    assert result.steps[-1].type is StepType.SYNTHESIS
    assert [s.type for s in result.steps].count(StepType.SYNTHESIS) == 1


@pytest.mark.parametrize("max_steps", [2, 4, 6])
async def test_unparseable_completions_stay_within_budget(registry, max_steps):
    provider = ScriptedProvider(default_analysis="CLASSIFY small talk")
    result = await Orchestrator(provider, registry).run(
        dev_request("tell me a joke", max_steps=max_steps, max_calls=3)
    )
    assert result.success
    assert len(result.steps) <= max_steps
    assert result.steps[-1].type is StepType.SYNTHESIS


def test_invalid_budgets():
    with pytest.raises(ValueError):
        Budgets(max_steps=0)
    with pytest.raises(ValueError):
        Budgets(max_calls=-1)


# =============================================================================
# Analysis behaviour
# =============================================================================


class TestAnalysis:
    async def test_no_actionable_signal_gets_a_nudge(self, registry):
        provider = ScriptedProvider(analysis=["CLASSIFY small talk", "STOP nothing needed"])
        result = await Orchestrator(provider, registry).run(dev_request("tell me a joke"))

        assert result.success
        assert "could not be acted upon (classification only)" in provider.analysis_prompts[1]
        assert "Classified intent: small talk" in provider.analysis_prompts[1]
        assert result.steps[0].reasoning == "No actionable signal: classification only"

    async def test_forced_directive_after_premature_stop(self, calendar_registry):
        sink = BufferedProgressSink()
        provider = ScriptedProvider(
            analysis=["STOP I can answer from memory", EXECUTE_SEARCH, "STOP done"],
            drafts=["Design review and Budget sync."],
        )
        result = await Orchestrator(provider, calendar_registry).run(dev_request(), progress=sink)

        assert len(result.invocations) == 1
        assert "DIRECTIVE" in provider.analysis_prompts[1]
        assert "searchEvents" in provider.analysis_prompts[1]
        assert any("directing the model" in event for event in sink.drain())

    async def test_forced_directive_is_used_once(self, calendar_registry):
        provider = ScriptedProvider(analysis=["STOP no", "STOP still no"])
        result = await Orchestrator(provider, calendar_registry).run(dev_request())

        assert result.invocations == []
        assert len(provider.analysis_prompts) == 2
        assert sum("DIRECTIVE" in p for p in provider.analysis_prompts) == 1

    async def test_proactive_directive_before_last_analysis(self, calendar_registry):
        provider = ScriptedProvider(analysis=[EXECUTE_SEARCH])
        await Orchestrator(provider, calendar_registry).run(dev_request(max_calls=1))
        assert "DIRECTIVE" in provider.analysis_prompts[0]

    async def test_implicit_answer_becomes_draft_hint(self, registry):
        provider = ScriptedProvider(analysis=["Roses are red, Mondays are grey."])
        result = await Orchestrator(provider, registry).run(dev_request("write a poem"))

        draft_prompt = provider.prompts_of(SYNTHESIS_HEADER)[0]
        assert "A preliminary answer was proposed earlier" in draft_prompt
        assert "Roses are red" in draft_prompt
        assert result.steps[0].reasoning == "Implicit answer (no marker)"

    async def test_dotted_capability_name_is_resolved(self, calendar_registry):
        provider = ScriptedProvider(
            analysis=['EXECUTE calendar.searchEvents PARAMETERS {"query": "x"}', "STOP ok"],
        )
        result = await Orchestrator(provider, calendar_registry).run(dev_request())
        assert result.invocations[0].capability == "searchEvents"
        assert result.invocations[0].succeeded

    async def test_validation_failure_reaches_model_as_result(self, calendar_registry):
        provider = ScriptedProvider(
            analysis=['EXECUTE searchEvents PARAMETERS {"limit": 2}', "STOP"],
        )
        result = await Orchestrator(provider, calendar_registry).run(dev_request())
        assert not result.invocations[0].succeeded
        assert "Invalid parameters for 'searchEvents'" in provider.analysis_prompts[1]

    async def test_model_id_and_options(self, calendar_registry):
        provider = ScriptedProvider()
        settings = OrchestratorSettings(model="gpt-test")
        await Orchestrator(provider, calendar_registry, settings=settings).run(dev_request())
        assert set(provider.model_ids) == {"gpt-test"}


# =============================================================================
# Validation and synthesis
# =============================================================================


class TestSynthesis:
    async def test_refinement_happens_exactly_once(self, calendar_registry):
        provider = ScriptedProvider(
            analysis=[EXECUTE_SEARCH, "STOP done"],
            drafts=["Design review, Budget sync"],
            verdicts=[
                "FORMAT_NEEDS_REFINEMENT: use bullet points",
                "FORMAT_NEEDS_REFINEMENT: still wrong",
            ],
            refinements=["- Design review\n- Budget sync"],
        )
        result = await Orchestrator(provider, calendar_registry).run(dev_request())

        assert result.final_answer == "- Design review\n- Budget sync"
        assert len(provider.prompts_of(VALIDATION_HEADER)) == 1
        refinement_prompts = provider.prompts_of(REFINEMENT_HEADER)
        assert len(refinement_prompts) == 1
        assert "✅ synthesis succeeded" in refinement_prompts[0]
        assert "Message: Design review, Budget sync" in refinement_prompts[0]
        assert "use bullet points" in refinement_prompts[0]
        assert step_types(result)[-1] is StepType.SYNTHESIS
        assert step_types(result).count(StepType.SYNTHESIS) == 1

    async def test_false_no_data_claim_is_corrected(self, calendar_registry):
        provider = ScriptedProvider(
            analysis=[EXECUTE_SEARCH, "STOP done"],
            drafts=["No data found for next week."],
            refinements=["Sorry, no events were found."],
        )
        result = await Orchestrator(provider, calendar_registry).run(dev_request())

        assert not claims_no_data(result.final_answer)
        for meeting in MEETINGS:
            assert meeting["title"] in result.final_answer

    async def test_non_dev_mode_returns_only_synthesis(self, calendar_registry):
        provider = ScriptedProvider(analysis=[EXECUTE_SEARCH, "STOP done"])
        request = OrchestrationRequest(user_message=MEETINGS_QUESTION)
        result = await Orchestrator(provider, calendar_registry).run(request)

        assert result.success
        assert step_types(result) == [StepType.SYNTHESIS]
        assert len(result.invocations) == 1

    async def test_deterministic_only_validation(self, calendar_registry, quiet_settings):
        provider = ScriptedProvider(analysis=[EXECUTE_SEARCH, "STOP done"])
        await Orchestrator(provider, calendar_registry, settings=quiet_settings).run(dev_request())
        assert provider.prompts_of(VALIDATION_HEADER) == []

    async def test_result_serialises(self, calendar_registry):
        provider = ScriptedProvider(analysis=[EXECUTE_SEARCH, "STOP done"])
        result = await Orchestrator(provider, calendar_registry).run(dev_request())
        payload = json.loads(json.dumps(result.to_dict()))
        assert payload["success"] is True
        assert payload["invocations"][0]["result"]["data"] == MEETINGS
        assert payload["steps"][0]["invocation"]["capability"] == "searchEvents"


# =============================================================================
# Failures
# =============================================================================


class SynthesisOutageProvider(ScriptedProvider):
    async def complete(self, prompt, model_id=None, options=None):
        if prompt.startswith(SYNTHESIS_HEADER):
            self.prompts.append(prompt)
            raise ConnectionError("endpoint went away")
        return await super().complete(prompt, model_id, options)


class TestFailures:
    async def test_single_retry_recovers(self, calendar_registry):
        provider = ScriptedProvider(analysis=[EXECUTE_SEARCH, "STOP"], failures=1)
        result = await Orchestrator(provider, calendar_registry).run(dev_request())
        assert result.success
        assert provider.prompts[0] == provider.prompts[1]

    async def test_endpoint_outage_is_terminal(self, calendar_registry):
        provider = ScriptedProvider(failures=5)
        sink = BufferedProgressSink()
        result = await Orchestrator(provider, calendar_registry).run(dev_request(), progress=sink)

        assert not result.success
        assert result.final_answer == FAILURE_MESSAGE
        assert "completion failed after 2 attempt(s)" in result.error
        assert len(provider.prompts) == 2
        assert result.steps == []
        assert sink.drain()[-1].startswith("❌ Orchestration failed during analyze")

    async def test_partial_trace_is_returned(self, calendar_registry):
        provider = SynthesisOutageProvider(analysis=[EXECUTE_SEARCH, "STOP done"])
        request = OrchestrationRequest(user_message=MEETINGS_QUESTION)
        result = await Orchestrator(provider, calendar_registry).run(request)

        assert not result.success
        assert len(result.invocations) == 1
        assert step_types(result) == [StepType.INVOCATION, StepType.ANALYSIS]
        assert "endpoint went away" in result.error

    async def test_no_retry_when_disabled(self, calendar_registry):
        provider = ScriptedProvider(failures=1)
        settings = OrchestratorSettings(completion_retries=0)
        result = await Orchestrator(provider, calendar_registry, settings=settings).run(dev_request())
        assert not result.success
        assert len(provider.prompts) == 1


# =============================================================================
# Progress and isolation
# =============================================================================


async def test_progress_events_are_ordered(calendar_registry):
    sink = BufferedProgressSink()
    provider = ScriptedProvider(analysis=[EXECUTE_SEARCH, "STOP done"])
    await Orchestrator(provider, calendar_registry).run(dev_request(), progress=sink)

    events = sink.drain()
    assert events[0].startswith("🚀 Starting orchestration")
    assert events[-1].startswith("✅ Orchestration complete")
    invoking = next(i for i, e in enumerate(events) if e.startswith("🔧 Invoking searchEvents"))
    drafting = events.index("📝 Drafting answer")
    assert invoking < drafting


async def test_raising_progress_callback_does_not_break_the_run(calendar_registry):
    def callback(message):
        raise RuntimeError("closed socket")

    provider = ScriptedProvider(analysis=[EXECUTE_SEARCH, "STOP done"])
    result = await Orchestrator(provider, calendar_registry).run(dev_request(), progress=callback)
    assert result.success


class EchoingProvider(CompletionProvider):
    """Derives every reply from the prompt so concurrent runs can share it."""

    def __init__(self) -> None:
        super().__init__({"id": "echoing"})

    async def complete(self, prompt, model_id=None, options: CompletionOptions | None = None):
        await asyncio.sleep(0)
        request = re.search(r"USER REQUEST:\n(.*)", prompt).group(1)
        if prompt.startswith(SYNTHESIS_HEADER):
            return f"Answer for: {request}"
        if "INVOCATIONS:\n(none)" in prompt:
            return f'EXECUTE searchEvents PARAMETERS {{"query": "{request}"}}'
        return "STOP done"


async def test_concurrent_runs_are_isolated():
    seen = []

    def search(params):
        seen.append(params["query"])
        return [params["query"]]

    registry = CapabilityRegistry()
    registry.register(
        CapabilityDescriptor(
            name="searchEvents",
            description="Search",
            parameters={"type": "object", "properties": {"query": {"type": "string"}}},
            category="calendar",
        ),
        search,
    )
    orchestrator = Orchestrator(
        EchoingProvider(), registry, settings=OrchestratorSettings(validation_model_check=False)
    )
    questions = [f"meetings on day {i}" for i in range(5)]
    results = await asyncio.gather(*(orchestrator.run(dev_request(q)) for q in questions))

    for question, result in zip(questions, results):
        assert result.success
        assert result.final_answer == f"Answer for: {question}"
        assert [inv.parameters["query"] for inv in result.invocations] == [question]
    assert sorted(seen) == sorted(questions)

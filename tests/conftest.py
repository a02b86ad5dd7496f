"""
Pytest configuration and shared fixtures for ToolLoop tests.

Provides a scripted completion provider, a fake remote catalog and
pre-populated capability registries.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from toolloop.agent.runner import Orchestrator
from toolloop.capabilities.registry import CapabilityRegistry
from toolloop.capabilities.remote import RemoteResult
from toolloop.capabilities.types import CapabilityDescriptor, CapabilityResult
from toolloop.config.settings import OrchestratorSettings
from toolloop.intellect.base import CompletionOptions, CompletionProvider
from toolloop.kernel.logging import LogManager

VALIDATION_HEADER = "## RESPONSE FORMAT VALIDATION TASK"
REFINEMENT_HEADER = "## RESPONSE REFINEMENT TASK"
SYNTHESIS_HEADER = "## RESPONSE SYNTHESIS TASK"

MEETINGS = [
    {"title": "Design review", "start": "2026-10-19T10:00:00"},
    {"title": "Budget sync", "start": "2026-10-21T15:30:00"},
]

EVENT_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string"},
        "limit": {"type": "integer", "default": 10},
    },
    "required": ["query"],
}


# =============================================================================
# Completion provider
# =============================================================================


class ScriptedProvider(CompletionProvider):
    """
    Completion provider that answers from queues, routed by prompt kind.

    Analysis replies are consumed in order; once exhausted ``default_analysis``
    is repeated. ``failures`` makes the next N calls raise.
    """

    def __init__(
        self,
        analysis: list[str] | None = None,
        drafts: list[str] | None = None,
        verdicts: list[str] | None = None,
        refinements: list[str] | None = None,
        default_analysis: str = "STOP I have everything I need",
        failures: int = 0,
    ) -> None:
        super().__init__({"id": "scripted"})
        self.analysis = list(analysis or [])
        self.drafts = list(drafts or [])
        self.verdicts = list(verdicts or [])
        self.refinements = list(refinements or [])
        self.default_analysis = default_analysis
        self.failures = failures
        self.prompts: list[str] = []
        self.model_ids: list[str | None] = []

    async def complete(
        self,
        prompt: str,
        model_id: str | None = None,
        options: CompletionOptions | None = None,
    ) -> str:
        self.prompts.append(prompt)
        self.model_ids.append(model_id)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("completion endpoint unreachable")
        if prompt.startswith(VALIDATION_HEADER):
            return self.verdicts.pop(0) if self.verdicts else "FORMAT_ACCEPTABLE: looks good"
        if prompt.startswith(REFINEMENT_HEADER):
            return self.refinements.pop(0) if self.refinements else "Refined answer."
        if prompt.startswith(SYNTHESIS_HEADER):
            return self.drafts.pop(0) if self.drafts else "Draft answer."
        return self.analysis.pop(0) if self.analysis else self.default_analysis

    def prompts_of(self, header: str) -> list[str]:
        return [p for p in self.prompts if p.startswith(header)]

    @property
    def analysis_prompts(self) -> list[str]:
        headers = (VALIDATION_HEADER, REFINEMENT_HEADER, SYNTHESIS_HEADER)
        return [p for p in self.prompts if not p.startswith(headers)]


# =============================================================================
# Remote catalog
# =============================================================================


class FakeRemoteCatalog:
    """In-memory remote catalog that counts calls and can be made to fail."""

    def __init__(
        self,
        descriptors: list[CapabilityDescriptor] | None = None,
        results: dict[str, RemoteResult] | None = None,
    ) -> None:
        self.descriptors = list(descriptors or [])
        self.results = dict(results or {})
        self.fail_listing = False
        self.list_calls = 0
        self.invocations: list[tuple[str, dict[str, Any]]] = []

    async def list_remote(self) -> list[CapabilityDescriptor]:
        self.list_calls += 1
        if self.fail_listing:
            raise ConnectionError("remote catalog unreachable")
        return list(self.descriptors)

    async def invoke_remote(self, name: str, parameters: dict[str, Any]) -> RemoteResult:
        self.invocations.append((name, parameters))
        return self.results.get(
            name, RemoteResult(content=[{"type": "text", "text": f"{name} done"}])
        )


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    LogManager.reset()


def search_events_descriptor() -> CapabilityDescriptor:
    return CapabilityDescriptor(
        name="searchEvents",
        description="Search calendar events",
        parameters=EVENT_SCHEMA,
        category="calendar",
    )


@pytest.fixture
def registry() -> CapabilityRegistry:
    return CapabilityRegistry()


@pytest.fixture
def calendar_registry() -> CapabilityRegistry:
    reg = CapabilityRegistry()
    reg.register(search_events_descriptor(), lambda params: list(MEETINGS))
    return reg


@pytest.fixture
def fake_remote() -> FakeRemoteCatalog:
    return FakeRemoteCatalog(
        descriptors=[
            CapabilityDescriptor(
                name="webSearch",
                description="Search the web",
                parameters={"type": "object", "properties": {"q": {"type": "string"}}},
                category="web",
            )
        ]
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quiet_settings() -> OrchestratorSettings:
    """Settings without the model-judged validation call."""
    return OrchestratorSettings(validation_model_check=False)


@pytest.fixture
def make_orchestrator() -> Callable[..., Orchestrator]:
    def factory(
        provider: CompletionProvider,
        reg: CapabilityRegistry,
        **settings: Any,
    ) -> Orchestrator:
        return Orchestrator(provider, reg, settings=OrchestratorSettings(**settings))

    return factory


def ok_result(data: Any = None, message: str | None = None) -> CapabilityResult:
    return CapabilityResult.ok(data=data, message=message)

"""
ToolLoop - 智能体工具编排引擎
ToolLoop - agentic tool-orchestration engine.

将自然语言请求转化为有界的能力调用序列与最终综合回答。
Turns a natural-language request into a bounded sequence of capability
invocations and a synthesized answer.
"""

__app_name__ = "ToolLoop"
__version__ = "1.0.0"

from toolloop.agent.runner import Orchestrator
from toolloop.agent.types import (
    Budgets,
    ChatMessage,
    OrchestrationRequest,
    OrchestrationResult,
)
from toolloop.capabilities.registry import CapabilityRegistry
from toolloop.capabilities.types import (
    Capability,
    CapabilityDescriptor,
    CapabilityResult,
)

__all__ = [
    "Orchestrator",
    "Budgets",
    "ChatMessage",
    "OrchestrationRequest",
    "OrchestrationResult",
    "CapabilityRegistry",
    "Capability",
    "CapabilityDescriptor",
    "CapabilityResult",
]

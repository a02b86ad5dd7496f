"""
Agent 模块 - 编排循环及其解析、上下文、校验组件
Agent module - the orchestration loop and its parsing, context and validation
components.
"""

from toolloop.agent.context import ContextBuilder
from toolloop.agent.parser import CompletionParser
from toolloop.agent.progress import BufferedProgressSink, ProgressReporter, ProgressSink
from toolloop.agent.runner import Orchestrator
from toolloop.agent.types import (
    Budgets,
    ChatMessage,
    OrchestrationRequest,
    OrchestrationResult,
    OrchestrationStep,
    StepType,
)
from toolloop.agent.validation import ValidationPolicy

__all__ = [
    "Budgets",
    "BufferedProgressSink",
    "ChatMessage",
    "CompletionParser",
    "ContextBuilder",
    "OrchestrationRequest",
    "OrchestrationResult",
    "OrchestrationStep",
    "Orchestrator",
    "ProgressReporter",
    "ProgressSink",
    "StepType",
    "ValidationPolicy",
]

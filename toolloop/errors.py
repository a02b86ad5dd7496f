"""
异常定义 - 引擎内所有自定义异常
Errors - all custom exceptions raised inside the engine.

单步失败（参数校验、能力执行）在注册表边界内被吸收；
只有基础设施级错误会上抛到编排循环。
Step-level failures (validation, capability execution) are absorbed at the
registry boundary; only infrastructure failures reach the orchestration loop.
"""

from __future__ import annotations


class ToolLoopError(Exception):
    """所有引擎异常的基类 / Base class for all engine errors."""


class CompletionError(ToolLoopError):
    """
    模型补全端点不可用或调用失败
    The completion endpoint is unreachable or the call failed.
    """

    def __init__(self, message: str, provider_id: str = "", attempts: int = 1) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.attempts = attempts


class ParameterValidationError(ToolLoopError):
    """
    能力参数不符合声明的 schema
    Capability parameters do not match the declared schema.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems) or ["invalid parameters"]
        super().__init__("; ".join(self.problems))


class RemoteCatalogError(ToolLoopError):
    """远程能力目录请求失败 / A remote catalog request failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConfigError(ToolLoopError):
    """配置无效 / Invalid configuration."""

"""
能力类型 - 描述符、调用结果与调用记录
Capability types - descriptors, results and invocation records.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel

# 失败结果缺少错误信息时的兜底
_UNKNOWN_ERROR = "Unknown error"
# 成功但既无数据也无消息时的兜底
_EMPTY_SUCCESS = "Completed with no output"


class CapabilityOrigin(str, Enum):
    """能力来源 / Where a capability descriptor came from."""

    STATIC = "static"
    REMOTE = "remote"


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    能力描述符 - 可调用能力的静态元数据
    Capability descriptor - static metadata for an invocable capability.

    ``parameters`` 可以是 JSON schema 字典，也可以是 pydantic 模型类。
    ``parameters`` is either a JSON-schema dict or a pydantic model class.

    ``mutating`` 标记能力是否修改外部状态；为 None 时按名称推断。
    ``mutating`` marks whether the capability changes external state; None
    means it is inferred from the name.
    """

    name: str
    description: str
    parameters: Any = field(default_factory=lambda: {"type": "object", "properties": {}})
    category: str = "general"
    origin: CapabilityOrigin = CapabilityOrigin.STATIC
    mutating: bool | None = None

    def parameter_schema(self) -> dict[str, Any]:
        """以 JSON schema 形式返回参数 / Return the parameters as a JSON schema."""
        if isinstance(self.parameters, type) and issubclass(self.parameters, BaseModel):
            return self.parameters.model_json_schema()
        return dict(self.parameters or {})

    def with_origin(self, origin: CapabilityOrigin) -> CapabilityDescriptor:
        return replace(self, origin=origin)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameter_schema(),
            "category": self.category,
            "origin": self.origin.value,
            "mutating": self.mutating,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        origin: CapabilityOrigin = CapabilityOrigin.STATIC,
    ) -> CapabilityDescriptor:
        """
        从字典构建描述符（兼容 ``inputSchema``/``parameterSchema`` 键名）
        Build a descriptor from a dict (accepts ``inputSchema``/``parameterSchema``).
        """
        schema = (
            data.get("parameters")
            or data.get("parameterSchema")
            or data.get("inputSchema")
            or {"type": "object", "properties": {}}
        )
        mutating = data.get("mutating")
        annotations = data.get("annotations") or {}
        if mutating is None and isinstance(annotations.get("readOnlyHint"), bool):
            mutating = not annotations["readOnlyHint"]
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            parameters=schema,
            category=str(data.get("category") or "general"),
            origin=origin,
            mutating=None if mutating is None else bool(mutating),
        )


@dataclass
class CapabilityResult:
    """
    能力调用结果
    Capability result.

    不变式：失败必有 error；成功必有 data 或 message。
    Invariant: failure always carries ``error``; success always carries
    ``data`` or ``message``.
    """

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            self.error = self.message or _UNKNOWN_ERROR
        if self.success and self.data is None and not self.message:
            self.message = _EMPTY_SUCCESS

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> CapabilityResult:
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str | None = None) -> CapabilityResult:
        return cls(success=False, error=error, message=message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            out["data"] = self.data
        if self.error:
            out["error"] = self.error
        if self.message:
            out["message"] = self.message
        return out


@dataclass
class CapabilityInvocation:
    """
    一次能力调用的完整记录
    Full record of a single capability invocation.
    """

    capability: str
    parameters: dict[str, Any]
    result: CapabilityResult
    started_at: float
    ended_at: float
    duration_ms: int

    @property
    def succeeded(self) -> bool:
        return self.result.success

    @property
    def has_data(self) -> bool:
        """成功且返回了非空数据 / Succeeded and returned non-empty data."""
        data = self.result.data
        if not self.result.success or data is None:
            return False
        if isinstance(data, (list, tuple, dict, str)):
            return len(data) > 0
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability": self.capability,
            "parameters": self.parameters,
            "result": self.result.to_dict(),
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
        }


class Capability(ABC):
    """
    能力接口 - 具体能力提供者实现此接口
    Capability interface - concrete capability providers implement this.
    """

    @abstractmethod
    def descriptor(self) -> CapabilityDescriptor:
        """返回能力描述符 / Return the capability descriptor."""
        ...

    @abstractmethod
    async def invoke(self, parameters: dict[str, Any]) -> CapabilityResult:
        """
        执行能力
        Execute the capability.
        """
        ...

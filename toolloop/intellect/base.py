"""
智能层基类 - 补全端点的抽象
Intellect base - abstraction over the model completion endpoint.

编排循环只把模型当作单轮函数 ``complete(prompt, model_id, options) -> text``。
The orchestration loop treats the model as a single-turn function
``complete(prompt, model_id, options) -> text``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CompletionOptions:
    """
    补全参数
    Completion options.
    """

    temperature: float | None = 0.1
    max_tokens: int = 1024
    system_prompt: str | None = None
    # 透传给底层 SDK 的额外参数
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderInfo:
    """提供者信息 / Provider information."""

    provider_id: str = ""
    display_name: str = ""
    model_name: str = ""
    endpoint: str = ""


class CompletionProvider(ABC):
    """
    补全提供者基类
    Completion provider base.
    """

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self._info = ProviderInfo(provider_id=str(config.get("id", "")))

    @property
    def info(self) -> ProviderInfo:
        return self._info

    @property
    def provider_id(self) -> str:
        return self._info.provider_id

    @property
    def default_model(self) -> str:
        return self._info.model_name

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        model_id: str | None = None,
        options: CompletionOptions | None = None,
    ) -> str:
        """
        发送单轮补全请求并返回文本
        Send a single-turn completion request and return the text.
        """
        ...

    async def close(self) -> None:
        """释放资源 / Release resources."""
        pass

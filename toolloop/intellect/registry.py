"""
智能层注册表 - 管理补全提供者的注册和选择
Intellect registry - manages registration and selection of completion
providers.
"""

from __future__ import annotations

import logging
from typing import Any

from toolloop.errors import ConfigError
from toolloop.intellect.base import CompletionProvider
from toolloop.intellect.providers.anthropic_chat import AnthropicChatProvider
from toolloop.intellect.providers.openai_chat import OpenAIChatProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    提供者注册表
    Provider registry.

    - 类型名 -> 提供者类
    - 提供者 ID -> 实例
    - 一个默认（活跃）提供者
    """

    def __init__(self) -> None:
        self._provider_types: dict[str, type[CompletionProvider]] = {}
        self._instances: dict[str, CompletionProvider] = {}
        self._active: str | None = None
        self._register_builtin_types()

    def register_type(self, type_name: str, provider_cls: type[CompletionProvider]) -> None:
        """注册一种提供者类型 / Register a provider type."""
        self._provider_types[type_name] = provider_cls
        logger.debug("已注册提供者类型: %s", type_name)

    @property
    def type_names(self) -> list[str]:
        return sorted(self._provider_types)

    def create(
        self,
        type_name: str,
        provider_id: str,
        config: dict[str, Any],
        set_as_active: bool = False,
    ) -> CompletionProvider:
        """
        创建一个提供者实例
        Create a provider instance.
        """
        provider_cls = self._provider_types.get(type_name)
        if provider_cls is None:
            raise ConfigError(f"Unknown provider type: {type_name}")

        instance = provider_cls({**config, "id": provider_id})
        self._instances[provider_id] = instance
        if set_as_active or self._active is None:
            self._active = provider_id
        logger.info("已创建提供者实例: %s (%s)", provider_id, type_name)
        return instance

    def set_active(self, provider_id: str) -> None:
        if provider_id not in self._instances:
            raise ConfigError(f"Provider instance not found: {provider_id}")
        self._active = provider_id

    def get(self, provider_id: str) -> CompletionProvider | None:
        return self._instances.get(provider_id)

    @property
    def active(self) -> CompletionProvider | None:
        """当前默认提供者 / The current default provider."""
        if self._active is None:
            return None
        return self._instances.get(self._active)

    def initialize_from_config(self, providers_conf: list[dict[str, Any]]) -> None:
        """
        从 ``providers`` 配置列表创建实例
        Create instances from the ``providers`` configuration list.
        """
        for pconf in providers_conf:
            type_name = pconf.get("type", "")
            pid = pconf.get("id", type_name)
            if not pconf.get("enabled", True) or not type_name:
                continue
            self.create(type_name, pid, pconf, set_as_active=bool(pconf.get("default", False)))

    async def close_all(self) -> None:
        for instance in self._instances.values():
            try:
                await instance.close()
            except Exception:
                logger.exception("关闭提供者失败: %s", instance.provider_id)

    def _register_builtin_types(self) -> None:
        """注册内置提供者类型 / Register built-in provider types."""
        self.register_type("openai", OpenAIChatProvider)
        self.register_type("anthropic", AnthropicChatProvider)

"""
OpenAI 补全提供者 - 对接 OpenAI 及兼容 API
OpenAI completion provider - interfaces with OpenAI and compatible APIs.

支持所有 OpenAI 兼容端点（OpenRouter、Ollama、vLLM 等）。
Supports all OpenAI-compatible endpoints (OpenRouter, Ollama, vLLM, etc.).
"""

from __future__ import annotations

import logging
from typing import Any

from toolloop.intellect.base import CompletionOptions, CompletionProvider, ProviderInfo

logger = logging.getLogger(__name__)

# 不接受 temperature 参数的推理模型
_NO_TEMPERATURE_MODELS = ("o1", "o3", "o4")


class OpenAIChatProvider(CompletionProvider):
    """
    OpenAI 补全提供者
    OpenAI completion provider.
    """

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        self._api_key = config.get("api_key", "")
        self._base_url = config.get("base_url", "https://api.openai.com/v1")
        self._model = config.get("model", "gpt-4o")
        self._client: Any = None
        self._info = ProviderInfo(
            provider_id=str(config.get("id", "openai")),
            display_name="OpenAI",
            model_name=self._model,
            endpoint=self._base_url,
        )

    def _ensure_client(self) -> Any:
        """确保客户端已初始化 / Ensure client is initialized."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
            )
        return self._client

    async def complete(
        self,
        prompt: str,
        model_id: str | None = None,
        options: CompletionOptions | None = None,
    ) -> str:
        client = self._ensure_client()
        options = options or CompletionOptions()
        model = model_id or self._model

        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        request_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": options.max_tokens,
            **options.extra,
        }
        if options.temperature is not None and not model.startswith(_NO_TEMPERATURE_MODELS):
            request_kwargs["temperature"] = options.temperature

        response = await client.chat.completions.create(**request_kwargs)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

"""
Anthropic Claude 补全提供者
Anthropic Claude completion provider.
"""

from __future__ import annotations

import logging
from typing import Any

from toolloop.intellect.base import CompletionOptions, CompletionProvider, ProviderInfo

logger = logging.getLogger(__name__)


class AnthropicChatProvider(CompletionProvider):
    """Anthropic Claude 补全提供者 / Anthropic Claude completion provider."""

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        self._api_key = config.get("api_key", "")
        self._model = config.get("model", "claude-sonnet-4-20250514")
        self._base_url = config.get("base_url", "")
        self._client: Any = None
        self._info = ProviderInfo(
            provider_id=str(config.get("id", "anthropic")),
            display_name="Anthropic Claude",
            model_name=self._model,
            endpoint=self._base_url,
        )

    def _ensure_client(self) -> Any:
        if self._client is None:
            from anthropic import AsyncAnthropic

            kwargs: dict[str, Any] = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    async def complete(
        self,
        prompt: str,
        model_id: str | None = None,
        options: CompletionOptions | None = None,
    ) -> str:
        client = self._ensure_client()
        options = options or CompletionOptions()

        request_kwargs: dict[str, Any] = {
            "model": model_id or self._model,
            "max_tokens": options.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            **options.extra,
        }
        if options.system_prompt:
            request_kwargs["system"] = options.system_prompt
        if options.temperature is not None:
            request_kwargs["temperature"] = options.temperature

        response = await client.messages.create(**request_kwargs)
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

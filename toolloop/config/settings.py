"""
编排设置 - 配置的类型化视图
Orchestrator settings - a typed view over the configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from toolloop.agent.heuristics import DEFAULT_CATEGORY_KEYWORDS
from toolloop.agent.types import DEFAULT_MAX_CALLS, DEFAULT_MAX_STEPS, Budgets
from toolloop.errors import ConfigError


@dataclass
class OrchestratorSettings:
    """编排循环使用的设置 / Settings consumed by the orchestrator."""

    # 为空时使用提供者自身配置的模型
    model: str = ""
    max_steps: int = DEFAULT_MAX_STEPS
    max_calls: int = DEFAULT_MAX_CALLS
    recency_window: int = 3
    completion_retries: int = 1
    temperature: float | None = 0.1
    max_tokens: int = 1024
    development_mode: bool = False
    validation_enabled: bool = True
    validation_model_check: bool = True
    category_keywords: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_KEYWORDS)
    )

    def __post_init__(self) -> None:
        if self.completion_retries < 0:
            raise ConfigError("completion_retries must be >= 0")
        if self.recency_window < 0:
            raise ConfigError("recency_window must be >= 0")

    @property
    def budgets(self) -> Budgets:
        try:
            return Budgets(max_steps=self.max_steps, max_calls=self.max_calls)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

    @classmethod
    def from_config(cls, config: Any) -> OrchestratorSettings:
        """
        从 ConfigManager 或普通字典构建
        Build from a ConfigManager or a plain dict.
        """
        data = config.as_dict() if hasattr(config, "as_dict") else dict(config or {})
        orch = data.get("orchestrator") or {}
        validation = data.get("validation") or {}
        heuristics = data.get("heuristics") or {}
        defaults = cls()
        try:
            return cls(
                model=str(orch.get("model", defaults.model)),
                max_steps=int(orch.get("max_steps", defaults.max_steps)),
                max_calls=int(orch.get("max_calls", defaults.max_calls)),
                recency_window=int(orch.get("recency_window", defaults.recency_window)),
                completion_retries=int(
                    orch.get("completion_retries", defaults.completion_retries)
                ),
                temperature=orch.get("temperature", defaults.temperature),
                max_tokens=int(orch.get("max_tokens", defaults.max_tokens)),
                development_mode=bool(orch.get("development_mode", False)),
                validation_enabled=bool(validation.get("enabled", True)),
                validation_model_check=bool(validation.get("model_check", True)),
                category_keywords=dict(
                    heuristics.get("category_keywords") or defaults.category_keywords
                ),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid orchestrator configuration: {exc}") from exc

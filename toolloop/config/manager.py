"""
配置管理器 - JSON 配置文件与默认值的合并视图
Config manager - a merged view over the JSON config file and the defaults.

文件中的值优先，缺失的键由默认值补齐；用点号路径访问嵌套键。
Values in the file win, missing keys are filled from the defaults, and nested
keys are addressed with dotted paths such as ``orchestrator.max_steps``.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any

from toolloop.config.defaults import CONFIG_FILE
from toolloop.errors import ConfigError

logger = logging.getLogger(__name__)


def merge_defaults(config: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    """
    递归补齐缺失的键，已有值不覆盖
    Recursively fill missing keys; existing values are never overwritten.
    """
    for key, default_value in defaults.items():
        if key not in config:
            config[key] = copy.deepcopy(default_value)
        elif isinstance(default_value, dict) and isinstance(config[key], dict):
            merge_defaults(config[key], default_value)
    return config


class ConfigManager:
    """
    配置管理器
    Config manager.

    文件不存在时使用默认值；文件存在但无法解析时抛出 ConfigError，
    不会静默退回默认值。
    A missing file means defaults only; a file that exists but cannot be
    parsed raises ConfigError instead of silently falling back.
    """

    def __init__(
        self,
        defaults: dict[str, Any] | None = None,
        config_path: str = CONFIG_FILE,
    ) -> None:
        self._defaults = copy.deepcopy(defaults or {})
        self._config: dict[str, Any] = copy.deepcopy(self._defaults)
        self._config_path = config_path

    @property
    def config_path(self) -> str:
        return self._config_path

    @property
    def exists(self) -> bool:
        return os.path.exists(self._config_path)

    async def load(self, persist: bool = False) -> None:
        """
        读取配置文件并补齐默认值；``persist`` 为真时写回合并结果
        Read the file and fill in defaults; with ``persist`` the merged result
        is written back.
        """
        if not self.exists:
            logger.info("未找到配置文件 %s，使用默认配置", self._config_path)
            self._config = copy.deepcopy(self._defaults)
        else:
            self._config = merge_defaults(self._read(), self._defaults)
            logger.info("配置已从 %s 加载", self._config_path)
        if persist:
            await self.save()

    def _read(self) -> dict[str, Any]:
        try:
            with open(self._config_path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(
                f"invalid JSON in {self._config_path} (line {exc.lineno}): {exc.msg}"
            ) from exc
        except OSError as exc:
            raise ConfigError(f"cannot read {self._config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{self._config_path} must contain a JSON object")
        return data

    async def save(self) -> None:
        """写入配置文件（自动创建目录） / Write the file, creating its directory."""
        try:
            os.makedirs(os.path.dirname(self._config_path) or ".", exist_ok=True)
            with open(self._config_path, "w", encoding="utf-8") as f:
                json.dump(self._config, f, ensure_ascii=False, indent=2)
        except OSError as exc:
            raise ConfigError(f"cannot write {self._config_path}: {exc}") from exc

    def get(self, key: str, default: Any = None) -> Any:
        """按点号路径取值 / Get a value by dotted path."""
        current: Any = self._config
        for part in key.split("."):
            if not isinstance(current, dict) or current.get(part) is None:
                return default
            current = current[part]
        return current

    def set(self, key: str, value: Any) -> None:
        """按点号路径赋值，中间层按需创建 / Set a value by dotted path."""
        *parents, leaf = key.split(".")
        current = self._config
        for part in parents:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[leaf] = value

    def section(self, name: str) -> dict[str, Any]:
        """
        返回顶层配置段的副本；缺失或不是对象时返回空字典
        Return a copy of a top-level section; empty when missing or not an object.
        """
        value = self._config.get(name)
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._config)

"""
默认配置 - 引擎的所有默认配置值
Default configuration - all default configuration values of the engine.
"""

from __future__ import annotations

import copy
import os
from typing import Any

from toolloop.agent.heuristics import DEFAULT_CATEGORY_KEYWORDS
from toolloop.agent.types import DEFAULT_MAX_CALLS, DEFAULT_MAX_STEPS

CONFIG_FILE = os.path.join("data", "config", "toolloop_config.json")


def build_default_config() -> dict[str, Any]:
    """
    构建默认配置
    Build the default configuration.
    """
    return {
        # 编排循环配置
        "orchestrator": {
            "model": "",
            "max_steps": DEFAULT_MAX_STEPS,
            "max_calls": DEFAULT_MAX_CALLS,
            "recency_window": 3,
            "completion_retries": 1,
            "temperature": 0.1,
            "max_tokens": 1024,
            "development_mode": False,
        },
        # 答案校验配置
        "validation": {
            "enabled": True,
            "model_check": True,
        },
        # 请求启发式
        "heuristics": {
            "category_keywords": copy.deepcopy(DEFAULT_CATEGORY_KEYWORDS),
        },
        # 能力配置
        "capabilities": {
            "enabled_categories": {},
            "remote_catalog": {
                "enabled": False,
                "base_url": "",
                "ttl_seconds": 30.0,
                "timeout": 30.0,
            },
        },
        # 补全提供者列表
        "providers": [],
        # 日志配置
        "logging": {
            "level": "INFO",
            "file": "data/logs/toolloop.log",
        },
    }

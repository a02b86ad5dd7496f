"""
配置模块 - 管理引擎配置
Config module - manages engine configuration.
"""

from toolloop.config.defaults import build_default_config
from toolloop.config.manager import ConfigManager
from toolloop.config.settings import OrchestratorSettings

__all__ = ["ConfigManager", "OrchestratorSettings", "build_default_config"]

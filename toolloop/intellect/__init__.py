"""
智能层模块 - 补全提供者管理
Intellect module - completion provider management.
"""

from toolloop.intellect.base import CompletionOptions, CompletionProvider, ProviderInfo
from toolloop.intellect.registry import ProviderRegistry

__all__ = [
    "CompletionOptions",
    "CompletionProvider",
    "ProviderInfo",
    "ProviderRegistry",
]

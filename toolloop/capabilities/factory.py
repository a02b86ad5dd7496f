"""
注册表工厂 - 按启用的类别注册能力
Registry factory - registers capabilities for enabled categories only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from toolloop.capabilities.registry import CapabilityRegistry
from toolloop.capabilities.remote import DEFAULT_TTL_SECONDS, HttpRemoteCatalog, RemoteCatalog
from toolloop.capabilities.types import Capability
from toolloop.capabilities.validation import ParameterValidator

logger = logging.getLogger(__name__)


def is_category_enabled(category: str, enabled_categories: dict[str, bool] | None) -> bool:
    """未配置时视为全部启用 / All categories are enabled when unconfigured."""
    if enabled_categories is None:
        return True
    return bool(enabled_categories.get(category, False))


def build_registry(
    capabilities: Iterable[Capability] = (),
    enabled_categories: dict[str, bool] | None = None,
    remote_catalog: RemoteCatalog | None = None,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
    validator: ParameterValidator | None = None,
) -> CapabilityRegistry:
    """
    构建注册表，跳过被禁用类别的能力
    Build a registry, skipping capabilities whose category is disabled.
    """
    registry = CapabilityRegistry(
        validator=validator,
        remote_catalog=remote_catalog,
        remote_ttl_seconds=ttl_seconds,
    )
    for capability in capabilities:
        descriptor = capability.descriptor()
        if not is_category_enabled(descriptor.category, enabled_categories):
            logger.debug("类别 %s 已禁用，跳过能力 %s", descriptor.category, descriptor.name)
            continue
        registry.register_capability(capability)
    return registry


def remote_catalog_from_config(conf: dict[str, Any]) -> RemoteCatalog | None:
    """
    根据 ``capabilities.remote_catalog`` 配置创建远程目录
    Create a remote catalog from the ``capabilities.remote_catalog`` section.
    """
    if not conf or not conf.get("enabled") or not conf.get("base_url"):
        return None
    return HttpRemoteCatalog(
        base_url=str(conf["base_url"]),
        timeout=float(conf.get("timeout", 30.0)),
        headers=conf.get("headers") or None,
    )

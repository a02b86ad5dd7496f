"""
能力注册表 - 管理所有可调用能力并统一包装失败
Capability registry - manages every invocable capability and wraps failures
uniformly.

``invoke`` 是失败隔离边界：参数校验失败、能力未找到、执行器异常
都转化为 ``success=False`` 的结果，绝不向外抛出。
``invoke`` is the failure-containment boundary: validation failures, unknown
names and executor exceptions all become ``success=False`` results and never
escape.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from toolloop.capabilities.remote import (
    DEFAULT_TTL_SECONDS,
    RemoteCatalog,
    RemoteCatalogCache,
    RemoteResult,
)
from toolloop.capabilities.types import (
    Capability,
    CapabilityDescriptor,
    CapabilityResult,
)
from toolloop.capabilities.validation import ParameterValidator, PydanticValidator
from toolloop.errors import ParameterValidationError

logger = logging.getLogger(__name__)

# 执行器：接收参数字典，同步返回结果或返回可等待对象
Executor = Callable[[dict[str, Any]], Any]


@dataclass
class _Entry:
    descriptor: CapabilityDescriptor
    executor: Executor


class CapabilityRegistry:
    """
    能力注册表 - 静态能力 + 可选的远程目录
    Capability registry - static capabilities plus an optional remote catalog.

    同名时静态能力优先于远程能力。类别开关由注册调用方负责。
    Static capabilities win over remote ones on name collision. Category
    gating is the responsibility of whoever calls ``register``.
    """

    def __init__(
        self,
        validator: ParameterValidator | None = None,
        remote_catalog: RemoteCatalog | None = None,
        remote_ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._entries: dict[str, _Entry] = {}
        self._validator = validator or PydanticValidator()
        self._remote: RemoteCatalogCache | None = None
        if remote_catalog is not None:
            self._remote = RemoteCatalogCache(remote_catalog, ttl_seconds=remote_ttl_seconds)

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------

    def register(self, descriptor: CapabilityDescriptor, executor: Executor) -> None:
        """注册（或覆盖）能力 / Register (or overwrite) a capability."""
        if descriptor.name in self._entries:
            logger.debug("覆盖已注册能力: %s", descriptor.name)
        self._entries[descriptor.name] = _Entry(descriptor=descriptor, executor=executor)
        logger.debug("已注册能力: %s (%s)", descriptor.name, descriptor.category)

    def register_capability(self, capability: Capability) -> None:
        """注册实现了 Capability 接口的对象 / Register a Capability object."""
        self.register(capability.descriptor(), capability.invoke)

    def unregister(self, name: str) -> None:
        self._entries.pop(name, None)

    def get(self, name: str) -> CapabilityDescriptor | None:
        """获取静态能力描述符 / Get a static capability descriptor."""
        entry = self._entries.get(name)
        return entry.descriptor if entry else None

    def attach_remote(
        self,
        catalog: RemoteCatalog,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        """挂载远程目录 / Attach a remote catalog."""
        self._remote = RemoteCatalogCache(catalog, ttl_seconds=ttl_seconds)

    @property
    def remote_cache(self) -> RemoteCatalogCache | None:
        return self._remote

    @property
    def static_capabilities(self) -> list[CapabilityDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    # ------------------------------------------------------------------
    # enumeration
    # ------------------------------------------------------------------

    async def _remote_snapshot(self) -> Mapping[str, CapabilityDescriptor]:
        if self._remote is None:
            return {}
        return await self._remote.snapshot()

    async def list_capabilities(self) -> list[CapabilityDescriptor]:
        """
        列出当前启用的全部能力（静态在前，远程同名者被屏蔽）
        List every enabled capability (static first; shadowed remote names dropped).
        """
        descriptors = self.static_capabilities
        remote = await self._remote_snapshot()
        descriptors.extend(d for name, d in remote.items() if name not in self._entries)
        return descriptors

    async def list_categories(self) -> list[str]:
        return sorted({d.category for d in await self.list_capabilities()})

    async def list_by_category(self, category: str) -> list[CapabilityDescriptor]:
        return [d for d in await self.list_capabilities() if d.category == category]

    async def resolve(self, name: str) -> CapabilityDescriptor | None:
        """按名称查找（先静态后远程） / Look up by name, static first then remote."""
        entry = self._entries.get(name)
        if entry is not None:
            return entry.descriptor
        return (await self._remote_snapshot()).get(name)

    # ------------------------------------------------------------------
    # invocation
    # ------------------------------------------------------------------

    async def invoke(self, name: str, raw_parameters: Any) -> CapabilityResult:
        """
        调用能力，所有失败都包装为结果
        Invoke a capability; every failure is wrapped into the result.
        """
        try:
            return await self._invoke(name, raw_parameters)
        except Exception as exc:
            logger.exception("能力 '%s' 执行失败", name)
            return CapabilityResult.fail(
                str(exc) or exc.__class__.__name__,
                f"Failed to execute capability: {name}",
            )

    async def _invoke(self, name: str, raw_parameters: Any) -> CapabilityResult:
        entry = self._entries.get(name)
        descriptor = entry.descriptor if entry else None
        if descriptor is None:
            descriptor = (await self._remote_snapshot()).get(name)
        if descriptor is None:
            logger.info("请求了未知能力: %s", name)
            return CapabilityResult.fail(
                f"Capability '{name}' not found",
                f"Unknown capability: {name}",
            )

        if raw_parameters is None:
            raw_parameters = {}
        if not isinstance(raw_parameters, Mapping):
            return CapabilityResult.fail(
                f"Invalid parameters for '{name}': expected an object, "
                f"got {type(raw_parameters).__name__}",
                f"Parameter validation failed for {name}",
            )

        try:
            parameters = self._validator.validate(descriptor.parameters, dict(raw_parameters))
        except ParameterValidationError as exc:
            logger.info("能力 '%s' 参数校验失败: %s", name, exc)
            return CapabilityResult.fail(
                f"Invalid parameters for '{name}': {exc}",
                f"Parameter validation failed for {name}",
            )

        if entry is not None:
            outcome = entry.executor(parameters)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return self._coerce(outcome)

        assert self._remote is not None
        remote_result = await self._remote.catalog.invoke_remote(name, parameters)
        return self._from_remote(remote_result)

    @staticmethod
    def _coerce(outcome: Any) -> CapabilityResult:
        if isinstance(outcome, CapabilityResult):
            return outcome
        return CapabilityResult.ok(data=outcome)

    @staticmethod
    def _from_remote(result: RemoteResult) -> CapabilityResult:
        text = result.text
        if result.is_error:
            return CapabilityResult.fail(text or "Remote capability reported an error")
        return CapabilityResult.ok(data=result.content or None, message=text or None)

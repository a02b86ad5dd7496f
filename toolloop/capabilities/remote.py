"""
远程能力目录 - 动态发现的能力来源及其 TTL 缓存
Remote catalog - a dynamically discovered capability source and its TTL cache.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

import aiohttp

from toolloop.capabilities.types import CapabilityDescriptor, CapabilityOrigin
from toolloop.errors import RemoteCatalogError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0

_EMPTY: Mapping[str, CapabilityDescriptor] = MappingProxyType({})


@dataclass
class RemoteResult:
    """
    远程调用结果（内容块列表）
    Remote call result (a list of content blocks).

    内容块形如 ``{"type": "text", "text": "..."}``，
    也可能是 ``image``/``resource`` 类型，携带 ``data`` 与 ``mimeType``。
    """

    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @property
    def text(self) -> str:
        """拼接所有文本块 / Join all text blocks."""
        return "\n".join(
            str(block.get("text", ""))
            for block in self.content
            if block.get("type", "text") == "text" and block.get("text")
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteResult:
        content = data.get("content") or []
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        return cls(
            content=[c for c in content if isinstance(c, dict)],
            is_error=bool(data.get("isError", data.get("is_error", False))),
        )


@runtime_checkable
class RemoteCatalog(Protocol):
    """远程目录协议 / Remote catalog protocol."""

    async def list_remote(self) -> list[CapabilityDescriptor]:
        ...

    async def invoke_remote(self, name: str, parameters: dict[str, Any]) -> RemoteResult:
        ...


class RemoteCatalogCache:
    """
    远程目录缓存 - 由注册表实例持有，按 TTL 刷新
    Remote catalog cache - owned by a registry instance, refreshed on a TTL.

    刷新后以单次赋值替换只读快照，读者总是看到完整的一份目录；
    刷新失败时记录日志并缓存空快照（退化为仅静态能力）。
    A refresh replaces the read-only snapshot in a single assignment, so
    readers always observe one complete catalog. A failed refresh is logged
    and an empty snapshot is cached for the TTL (static-only degradation).
    """

    def __init__(
        self,
        catalog: RemoteCatalog,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._catalog = catalog
        self._ttl = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._snapshot: Mapping[str, CapabilityDescriptor] = _EMPTY
        self._expires_at: float | None = None
        self._last_error: str | None = None

    @property
    def catalog(self) -> RemoteCatalog:
        return self._catalog

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def is_fresh(self) -> bool:
        return self._expires_at is not None and self._clock() < self._expires_at

    def invalidate(self) -> None:
        """强制下次访问时刷新 / Force a refresh on next access."""
        self._expires_at = None

    async def snapshot(self) -> Mapping[str, CapabilityDescriptor]:
        """获取当前目录快照（必要时刷新） / Get the current snapshot, refreshing if stale."""
        if not self.is_fresh():
            await self.refresh()
        return self._snapshot

    async def refresh(self) -> Mapping[str, CapabilityDescriptor]:
        try:
            descriptors = await self._catalog.list_remote()
        except Exception as exc:
            logger.warning("远程目录刷新失败，退化为仅静态能力: %s", exc)
            self._last_error = str(exc)
            self._snapshot = _EMPTY
        else:
            fresh: dict[str, CapabilityDescriptor] = {}
            for descriptor in descriptors:
                fresh[descriptor.name] = descriptor.with_origin(CapabilityOrigin.REMOTE)
            self._snapshot = MappingProxyType(fresh)
            self._last_error = None
            logger.debug("远程目录已刷新: %d 个能力", len(fresh))
        self._expires_at = self._clock() + self._ttl
        return self._snapshot


class HttpRemoteCatalog:
    """
    基于 HTTP 的远程目录客户端
    HTTP-backed remote catalog client.

    GET  {base_url}/capabilities                -> [descriptor, ...]
    POST {base_url}/capabilities/{name}/invoke  -> {"content": [...], "isError": bool}
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        default_category: str = "remote",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = dict(headers or {})
        self._default_category = default_category

    async def list_remote(self) -> list[CapabilityDescriptor]:
        payload = await self._request("GET", "/capabilities")
        items = payload.get("capabilities", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise RemoteCatalogError("remote catalog returned a non-list payload")

        descriptors = []
        for item in items:
            if not isinstance(item, dict) or not item.get("name"):
                logger.debug("忽略无效的远程描述符: %r", item)
                continue
            item = {"category": self._default_category, **item}
            descriptors.append(CapabilityDescriptor.from_dict(item, origin=CapabilityOrigin.REMOTE))
        return descriptors

    async def invoke_remote(self, name: str, parameters: dict[str, Any]) -> RemoteResult:
        payload = await self._request(
            "POST",
            f"/capabilities/{name}/invoke",
            json={"parameters": parameters},
        )
        if not isinstance(payload, dict):
            raise RemoteCatalogError(f"remote invoke of '{name}' returned a non-object payload")
        return RemoteResult.from_dict(payload)

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        url = self._base_url + path
        async with aiohttp.ClientSession(headers=self._headers) as session:
            async with session.request(
                method,
                url,
                json=json,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise RemoteCatalogError(
                        f"{method} {url} failed: HTTP {resp.status} {body[:200]}",
                        status=resp.status,
                    )
                return await resp.json(content_type=None)

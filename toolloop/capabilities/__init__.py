"""
能力模块 - 能力注册表、校验与远程目录
Capabilities module - registry, validation and the remote catalog.
"""

from toolloop.capabilities.factory import build_registry
from toolloop.capabilities.registry import CapabilityRegistry
from toolloop.capabilities.remote import (
    HttpRemoteCatalog,
    RemoteCatalog,
    RemoteCatalogCache,
    RemoteResult,
)
from toolloop.capabilities.types import (
    Capability,
    CapabilityDescriptor,
    CapabilityInvocation,
    CapabilityOrigin,
    CapabilityResult,
)
from toolloop.capabilities.validation import (
    JsonSchemaValidator,
    ParameterValidator,
    PydanticValidator,
)

__all__ = [
    "Capability",
    "CapabilityDescriptor",
    "CapabilityInvocation",
    "CapabilityOrigin",
    "CapabilityRegistry",
    "CapabilityResult",
    "HttpRemoteCatalog",
    "JsonSchemaValidator",
    "ParameterValidator",
    "PydanticValidator",
    "RemoteCatalog",
    "RemoteCatalogCache",
    "RemoteResult",
    "build_registry",
]

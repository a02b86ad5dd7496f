"""
参数校验 - 可插拔的能力参数校验器
Parameter validation - pluggable capability parameter validators.

注册表只依赖 ``ParameterValidator`` 协议，不绑定某个 schema 库。
The registry depends only on the ``ParameterValidator`` protocol and is not
bound to a single schema library.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Protocol, runtime_checkable

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ValidationError

from toolloop.errors import ParameterValidationError

logger = logging.getLogger(__name__)


@runtime_checkable
class ParameterValidator(Protocol):
    """参数校验器协议 / Parameter validator protocol."""

    def validate(self, schema: Any, parameters: dict[str, Any]) -> dict[str, Any]:
        """
        校验并返回规范化后的参数，失败时抛出 ParameterValidationError
        Validate and return normalised parameters; raise
        ParameterValidationError on failure.
        """
        ...


class JsonSchemaValidator:
    """
    JSON schema 校验器
    JSON-schema validator.

    收集全部错误而非首个错误，并为缺失的顶层属性填充 ``default``。
    Collects every error rather than the first, and fills top-level
    ``default`` values for absent properties.
    """

    def __init__(self, fill_defaults: bool = True) -> None:
        self._fill_defaults = fill_defaults

    def validate(self, schema: Any, parameters: dict[str, Any]) -> dict[str, Any]:
        if not schema:
            return dict(parameters)
        if not isinstance(schema, dict):
            raise ParameterValidationError([f"unsupported schema type: {type(schema).__name__}"])

        try:
            Draft7Validator.check_schema(schema)
            validator = Draft7Validator(schema)
        except SchemaError as exc:
            raise ParameterValidationError([f"invalid schema: {exc.message}"]) from exc

        problems = [
            self._describe(error)
            for error in sorted(validator.iter_errors(parameters), key=lambda e: list(e.path))
        ]
        if problems:
            raise ParameterValidationError(problems)

        normalised = dict(parameters)
        if self._fill_defaults:
            for key, prop in (schema.get("properties") or {}).items():
                if key not in normalised and isinstance(prop, dict) and "default" in prop:
                    normalised[key] = copy.deepcopy(prop["default"])
        return normalised

    @staticmethod
    def _describe(error: Any) -> str:
        location = ".".join(str(p) for p in error.path)
        return f"{location}: {error.message}" if location else error.message


class PydanticValidator:
    """
    pydantic 校验器 - schema 为 BaseModel 子类时使用模型校验
    Pydantic validator - uses model validation when the schema is a BaseModel
    subclass, and delegates plain JSON schemas to a fallback validator.
    """

    def __init__(self, fallback: ParameterValidator | None = None) -> None:
        self._fallback = fallback or JsonSchemaValidator()

    def validate(self, schema: Any, parameters: dict[str, Any]) -> dict[str, Any]:
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            try:
                model = schema.model_validate(parameters)
            except ValidationError as exc:
                problems = [
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    if err.get("loc")
                    else err["msg"]
                    for err in exc.errors()
                ]
                raise ParameterValidationError(problems) from exc
            return model.model_dump()
        return self._fallback.validate(schema, parameters)

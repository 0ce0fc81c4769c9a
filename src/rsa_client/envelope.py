"""Normalization of backend JSON envelopes.

Every backend response is wrapped as ``{"success": bool, "data"?: T,
"error"?: str}``. List endpoints are inconsistent: some return the list
directly in ``data`` and some return a paginated object whose ``data`` key
holds the list. ``decode_envelope`` is the only place that inspects the raw
shape; everything downstream works with :class:`ApiResponse`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

UNKNOWN_ERROR = "Unknown error"


class EnvelopeShape(str, Enum):
    EMPTY = "empty"
    OBJECT = "object"
    FLAT_LIST = "flat_list"
    NESTED_LIST = "nested_list"


class ApiResponse(BaseModel):
    """Canonical response shape returned by the REST client."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None
    shape: EnvelopeShape = EnvelopeShape.EMPTY

    @property
    def items(self) -> list[Any]:
        if self.shape is EnvelopeShape.FLAT_LIST:
            return list(self.data)
        if self.shape is EnvelopeShape.NESTED_LIST:
            return list(self.data["data"])
        return []

    @property
    def is_list(self) -> bool:
        return self.shape in (EnvelopeShape.FLAT_LIST, EnvelopeShape.NESTED_LIST)

    @property
    def pagination(self) -> dict[str, Any]:
        if self.shape is not EnvelopeShape.NESTED_LIST:
            return {}
        return {
            key: self.data[key]
            for key in ("page", "limit", "total", "totalPages")
            if key in self.data
        }

    def field(self, name: str, default: Any = None) -> Any:
        """Read a key of an object payload, ``default`` for any other shape."""
        if self.shape is EnvelopeShape.OBJECT:
            return self.data.get(name, default)
        return default


def classify(data: Any) -> EnvelopeShape:
    if data is None:
        return EnvelopeShape.EMPTY
    if isinstance(data, list):
        return EnvelopeShape.FLAT_LIST
    if isinstance(data, dict):
        if isinstance(data.get("data"), list):
            return EnvelopeShape.NESTED_LIST
        return EnvelopeShape.OBJECT
    # Scalars carry no fields or items.
    return EnvelopeShape.EMPTY


def decode_envelope(payload: Any, status_code: int | None = None) -> ApiResponse:
    """Decode a parsed JSON body into an :class:`ApiResponse`."""
    if isinstance(payload, dict) and "success" in payload:
        success = bool(payload.get("success"))
        data = payload.get("data")
        if success:
            return ApiResponse(
                success=True,
                data=data,
                status_code=status_code,
                shape=classify(data),
            )
        return failure(extract_error_message(payload) or UNKNOWN_ERROR, status_code)
    # Bare payloads (no envelope) are treated as successful data.
    return ApiResponse(
        success=True,
        data=payload,
        status_code=status_code,
        shape=classify(payload),
    )


def failure(message: str, status_code: int | None = None) -> ApiResponse:
    return ApiResponse(
        success=False,
        error=message or UNKNOWN_ERROR,
        status_code=status_code,
    )


def extract_error_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in ("error", "message", "detail"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, dict):
            nested = value.get("message")
            if isinstance(nested, str) and nested.strip():
                return nested
    return None

"""JSON envelope shared by every /api route.

Every body has ``success``; successful bodies carry ``data`` and optional
``meta``, failures carry ``error`` and, for validation failures,
``meta.validation_errors``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from flask import Response, jsonify

ApiResult = tuple[Response, int]


@dataclass
class APIResponse:
    """Envelope for one API answer."""

    success: bool
    data: Any = None
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            body["data"] = self.data
        if self.error:
            body["error"] = self.error
        if self.meta:
            body["meta"] = self.meta
        return body

    def respond(self, status: int) -> ApiResult:
        return jsonify(self.to_dict()), status


def success_response(data: Any = None, status: int = 200, **meta: Any) -> ApiResult:
    """Wrap ``data`` in a successful envelope; keyword args become ``meta``."""
    return APIResponse(success=True, data=data, meta=meta).respond(status)


def list_response(items: Sequence[Any], **meta: Any) -> ApiResult:
    """Successful envelope for a list, with ``meta.total`` filled in."""
    return success_response(list(items), total=len(items), **meta)


def error_response(error: str, status: int = 400, **meta: Any) -> ApiResult:
    return APIResponse(success=False, error=error, meta=meta).respond(status)


def not_found_response(resource: str = "Resource") -> ApiResult:
    return error_response(f"{resource} not found", status=404)


def unavailable_response(resource: str) -> ApiResult:
    """503 for a backing store (roster, access log) that cannot be reached."""
    return error_response(f"{resource} unavailable", status=503)


def validation_error_response(errors: list[str] | str) -> ApiResult:
    if isinstance(errors, str):
        errors = [errors]
    return error_response("Validation failed", status=400, validation_errors=errors)

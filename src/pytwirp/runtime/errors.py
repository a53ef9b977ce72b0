from __future__ import annotations

import json
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError

from .context import Context, method_name, package_name, service_name


class ErrorCode(str, Enum):
    CANCELED = "canceled"
    UNKNOWN = "unknown"
    INVALID_ARGUMENT = "invalid_argument"
    MALFORMED = "malformed"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_FOUND = "not_found"
    BAD_ROUTE = "bad_route"
    ALREADY_EXISTS = "already_exists"
    PERMISSION_DENIED = "permission_denied"
    UNAUTHENTICATED = "unauthenticated"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    FAILED_PRECONDITION = "failed_precondition"
    ABORTED = "aborted"
    OUT_OF_RANGE = "out_of_range"
    UNIMPLEMENTED = "unimplemented"
    INTERNAL = "internal"
    UNAVAILABLE = "unavailable"
    DATA_LOSS = "data_loss"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.CANCELED: 408,
    ErrorCode.UNKNOWN: 500,
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.MALFORMED: 400,
    ErrorCode.DEADLINE_EXCEEDED: 408,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.BAD_ROUTE: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.RESOURCE_EXHAUSTED: 429,
    ErrorCode.FAILED_PRECONDITION: 412,
    ErrorCode.ABORTED: 409,
    ErrorCode.OUT_OF_RANGE: 400,
    ErrorCode.UNIMPLEMENTED: 501,
    ErrorCode.INTERNAL: 500,
    ErrorCode.UNAVAILABLE: 503,
    ErrorCode.DATA_LOSS: 500,
}


class ErrorEnvelope(BaseModel):
    code: str
    msg: str = ""
    meta: dict[str, str] = {}


def code_from_intermediary_status(status_code: int) -> ErrorCode:
    """Error code for a non-Twirp error body, derived from the HTTP status."""
    if 300 <= status_code < 400:
        return ErrorCode.INTERNAL
    if status_code == 400:
        return ErrorCode.INTERNAL
    if status_code == 401:
        return ErrorCode.UNAUTHENTICATED
    if status_code == 403:
        return ErrorCode.PERMISSION_DENIED
    if status_code == 404:
        return ErrorCode.BAD_ROUTE
    if status_code in (429, 502, 503, 504):
        return ErrorCode.UNAVAILABLE
    return ErrorCode.UNKNOWN


class TwirpError(Exception):
    def __init__(
        self,
        code: str,
        msg: str,
        *,
        meta: Mapping[str, str] | None = None,
        context: Context | None = None,
        status_code: int | None = None,
        connection_error: bool = False,
    ) -> None:
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.msg = msg
        self.meta = dict(meta or {})
        self.context = context if context is not None else Context()
        self.status_code = status_code
        self.connection_error = connection_error

        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"{self.code}: {self.msg}"
        if self.status_code is not None:
            base = f"[{self.status_code}] {base}"
        route = self.route
        if route:
            base = f"{route}: {base}"
        return base

    @property
    def route(self) -> str:
        service = service_name(self.context)
        method = method_name(self.context)
        if not service or not method:
            return ""
        package = package_name(self.context)
        full = f"{package}.{service}" if package else service
        return f"{full}/{method}"

    @classmethod
    def from_json(cls, data: Any, ctx: Context, *, status_code: int | None = None) -> TwirpError:
        envelope = ErrorEnvelope.model_validate(data)
        return cls(envelope.code, envelope.msg, meta=envelope.meta, context=ctx, status_code=status_code)

    @classmethod
    def from_response(cls, status_code: int, body: bytes, ctx: Context) -> TwirpError:
        try:
            return cls.from_json(json.loads(body), ctx, status_code=status_code)
        except (ValueError, ValidationError):
            # not JSON, or JSON that is not an error envelope
            return cls.from_intermediary(status_code, body, ctx)

    @classmethod
    def from_intermediary(cls, status_code: int, body: bytes, ctx: Context) -> TwirpError:
        code = code_from_intermediary_status(status_code)
        meta = {
            "http_error_from_intermediary": "true",
            "status_code": str(status_code),
            "body": body.decode("utf-8", errors="replace"),
        }
        return cls(
            code,
            f"Error from intermediary with HTTP status code {status_code}",
            meta=meta,
            context=ctx,
            status_code=status_code,
        )

    @classmethod
    def from_connection_error(cls, message: str, ctx: Context) -> TwirpError:
        return cls(ErrorCode.INTERNAL, message, context=ctx, connection_error=True)

    @classmethod
    def from_hook_error(cls, hook: str, exc: BaseException, ctx: Context) -> TwirpError:
        return cls(
            ErrorCode.INTERNAL,
            f"{hook} hook failed: {exc.__class__.__name__}: {exc}",
            meta={"hook": hook},
            context=ctx,
        )

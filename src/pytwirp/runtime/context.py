from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

PACKAGE_NAME = "twirp.package_name"
SERVICE_NAME = "twirp.service_name"
METHOD_NAME = "twirp.method_name"
HTTP_REQUEST_HEADERS = "twirp.http_request_headers"
TIMEOUT = "twirp.timeout"


class Context(Mapping[str, Any]):
    """Immutable per-call values. ``with_value`` returns a new context."""

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(values or {})

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Context({self._values!r})"

    def with_value(self, key: str, value: Any) -> Context:
        values = dict(self._values)
        values[key] = value
        return Context(values)


def with_package_name(ctx: Context, name: str) -> Context:
    return ctx.with_value(PACKAGE_NAME, name)


def with_service_name(ctx: Context, name: str) -> Context:
    return ctx.with_value(SERVICE_NAME, name)


def with_method_name(ctx: Context, name: str) -> Context:
    return ctx.with_value(METHOD_NAME, name)


def with_http_request_headers(ctx: Context, headers: Mapping[str, str]) -> Context:
    return ctx.with_value(HTTP_REQUEST_HEADERS, dict(headers))


def with_timeout(ctx: Context, seconds: float | None) -> Context:
    return ctx.with_value(TIMEOUT, seconds)


def package_name(ctx: Context) -> str | None:
    return ctx.get(PACKAGE_NAME)


def service_name(ctx: Context) -> str | None:
    return ctx.get(SERVICE_NAME)


def method_name(ctx: Context) -> str | None:
    return ctx.get(METHOD_NAME)


def retrieve_http_request_headers(ctx: Context) -> dict[str, str]:
    return dict(ctx.get(HTTP_REQUEST_HEADERS) or {})


def retrieve_timeout(ctx: Context) -> float | None:
    return ctx.get(TIMEOUT)

from __future__ import annotations

from functools import reduce
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from .context import Context

if TYPE_CHECKING:
    from .errors import TwirpError
    from .transport import HttpRequest

Method = Callable[[Context, Any], Awaitable[Any]]
Interceptor = Callable[[Method], Method]

RequestPreparedHook = Callable[[Context, "HttpRequest"], Optional[Context]]
ResponseReceivedHook = Callable[[Context], None]
ErrorHook = Callable[[Context, "TwirpError"], None]


class ClientHooks:
    """Callbacks around each client call. Missing callbacks are no-ops.

    ``on_request_prepared`` runs after the request is built and before it is
    sent; it may mutate the request and may return an enriched context.
    ``on_response_received`` runs after a 200 body has been read.
    ``on_error`` runs once for every ``TwirpError`` before it is raised.
    """

    def __init__(
        self,
        *,
        on_request_prepared: RequestPreparedHook | None = None,
        on_response_received: ResponseReceivedHook | None = None,
        on_error: ErrorHook | None = None,
    ) -> None:
        self._on_request_prepared = on_request_prepared
        self._on_response_received = on_response_received
        self._on_error = on_error

    def on_request_prepared(self, ctx: Context, request: HttpRequest) -> Context:
        if self._on_request_prepared is None:
            return ctx
        updated = self._on_request_prepared(ctx, request)
        return ctx if updated is None else updated

    def on_response_received(self, ctx: Context) -> None:
        if self._on_response_received is not None:
            self._on_response_received(ctx)

    def on_error(self, ctx: Context, err: TwirpError) -> None:
        if self._on_error is not None:
            self._on_error(ctx, err)


def _identity(method: Method) -> Method:
    return method


def chain_interceptors(*interceptors: Interceptor) -> Interceptor:
    """Compose interceptors; the first one is outermost. No arguments gives the identity."""
    if not interceptors:
        return _identity

    def chained(method: Method) -> Method:
        return reduce(lambda wrapped, interceptor: interceptor(wrapped), reversed(interceptors), method)

    return chained

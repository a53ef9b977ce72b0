from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, TypeVar

import httpx
from google.protobuf import json_format
from google.protobuf.message import DecodeError, Message

from .context import Context, retrieve_http_request_headers, retrieve_timeout
from .errors import ErrorCode, TwirpError
from .hooks import ClientHooks

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"
PROTOBUF_MEDIA_TYPE = "application/protobuf"

_FIXED_HEADERS = ("Accept", "Content-Type")

M = TypeVar("M", bound=Message)


def normalize_base_url(base_url: str) -> str:
    return base_url if base_url.endswith("/") else base_url + "/"


def normalize_prefix(prefix: str) -> str:
    prefix = prefix.lstrip("/")
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix


@dataclass
class HttpRequest:
    """Outgoing request as handed to ``ClientHooks.on_request_prepared``; mutable."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


def create_request(url: str, ctx: Context, media_type: str, body: bytes) -> HttpRequest:
    fixed = {name.lower() for name in _FIXED_HEADERS}
    headers = {
        key: value for key, value in retrieve_http_request_headers(ctx).items() if key.lower() not in fixed
    }
    for name in _FIXED_HEADERS:
        headers[name] = media_type
    return HttpRequest(method="POST", url=url, headers=headers, body=body)


async def _do_request(
    ctx: Context,
    url: str,
    hooks: ClientHooks,
    body: bytes,
    media_type: str,
    transport: httpx.AsyncBaseTransport | None,
) -> tuple[Context, bytes]:
    try:
        async with httpx.AsyncClient(transport=transport, timeout=retrieve_timeout(ctx)) as client:
            request = create_request(url, ctx, media_type, body)
            try:
                ctx = hooks.on_request_prepared(ctx, request)
            except Exception as exc:
                raise TwirpError.from_hook_error("on_request_prepared", exc, ctx) from exc

            logger.debug("POST %s (%s)", request.url, media_type)
            response = await client.request(
                request.method, request.url, headers=request.headers, content=request.body
            )
            data = response.content
            if response.status_code != 200:
                raise TwirpError.from_response(response.status_code, data, ctx)

            try:
                hooks.on_response_received(ctx)
            except Exception as exc:
                raise TwirpError.from_hook_error("on_response_received", exc, ctx) from exc
            return ctx, data
    except TwirpError as err:
        logger.debug("twirp error from %s: %s", url, err)
        hooks.on_error(ctx, err)
        raise
    except Exception as exc:
        err = TwirpError.from_connection_error(f"{exc.__class__.__name__}: {exc}", ctx)
        logger.debug("connection error from %s: %s", url, err)
        hooks.on_error(ctx, err)
        raise err from exc


def _decode(ctx: Context, hooks: ClientHooks, decode: Callable[[], M]) -> M:
    try:
        return decode()
    except (json_format.ParseError, DecodeError, UnicodeDecodeError) as exc:
        err = TwirpError(ErrorCode.INTERNAL, f"failed to decode response: {exc}", context=ctx, status_code=200)
        hooks.on_error(ctx, err)
        raise err from exc


async def do_json_request(
    ctx: Context,
    url: str,
    hooks: ClientHooks,
    req: Message,
    response_type: type[M],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> M:
    body = json.dumps(json_format.MessageToDict(req)).encode("utf-8")
    ctx, data = await _do_request(ctx, url, hooks, body, JSON_MEDIA_TYPE, transport)
    return _decode(ctx, hooks, lambda: json_format.Parse(data, response_type(), ignore_unknown_fields=True))


async def do_protobuf_request(
    ctx: Context,
    url: str,
    hooks: ClientHooks,
    req: Message,
    response_type: type[M],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> M:
    body = req.SerializeToString()
    ctx, data = await _do_request(ctx, url, hooks, body, PROTOBUF_MEDIA_TYPE, transport)
    return _decode(ctx, hooks, lambda: response_type.FromString(data))

"""Runtime for clients generated by protoc-gen-pytwirp.

Generated modules import this package as ``twirp``.
"""

from __future__ import annotations

from .context import (
    Context,
    method_name,
    package_name,
    retrieve_http_request_headers,
    retrieve_timeout,
    service_name,
    with_http_request_headers,
    with_method_name,
    with_package_name,
    with_service_name,
    with_timeout,
)
from .errors import ErrorCode, ErrorEnvelope, TwirpError
from .hooks import ClientHooks, Interceptor, Method, chain_interceptors
from .modules import merge_modules
from .transport import (
    JSON_MEDIA_TYPE,
    PROTOBUF_MEDIA_TYPE,
    HttpRequest,
    create_request,
    do_json_request,
    do_protobuf_request,
    normalize_base_url,
    normalize_prefix,
)

__all__ = [
    "ClientHooks",
    "Context",
    "ErrorCode",
    "ErrorEnvelope",
    "HttpRequest",
    "Interceptor",
    "JSON_MEDIA_TYPE",
    "Method",
    "PROTOBUF_MEDIA_TYPE",
    "TwirpError",
    "chain_interceptors",
    "create_request",
    "do_json_request",
    "do_protobuf_request",
    "merge_modules",
    "method_name",
    "normalize_base_url",
    "normalize_prefix",
    "package_name",
    "retrieve_http_request_headers",
    "retrieve_timeout",
    "service_name",
    "with_http_request_headers",
    "with_method_name",
    "with_package_name",
    "with_service_name",
    "with_timeout",
]

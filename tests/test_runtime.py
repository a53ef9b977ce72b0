from __future__ import annotations

import json
import types
import unittest
from typing import Any

import httpx
from _fixtures import echo_request
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from google.protobuf import json_format, wrappers_pb2

from pytwirp import runtime as twirp
from pytwirp.plugin import generate


def _load_echo_module() -> types.ModuleType:
    (generated,) = generate(echo_request()).file
    module = types.ModuleType("echo_pbtwirp")
    exec(compile(generated.content, generated.name, "exec"), module.__dict__)
    return module


def _build_echo_app(seen: list[dict[str, str]]) -> FastAPI:
    app = FastAPI()

    @app.post("/twirp/echo.v1.Echo/Say")
    async def say(request: Request) -> Response:
        seen.append(dict(request.headers))
        body = await request.body()
        if request.headers.get("content-type") == twirp.JSON_MEDIA_TYPE:
            msg = json_format.Parse(body, wrappers_pb2.StringValue())
            reply = wrappers_pb2.StringValue(value=msg.value.upper())
            return Response(content=json_format.MessageToJson(reply), media_type=twirp.JSON_MEDIA_TYPE)
        msg = wrappers_pb2.StringValue.FromString(body)
        reply = wrappers_pb2.StringValue(value=msg.value.upper())
        return Response(content=reply.SerializeToString(), media_type=twirp.PROTOBUF_MEDIA_TYPE)

    @app.post("/twirp/echo.v1.Echo/Fail")
    async def fail() -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"code": "not_found", "msg": "no such echo", "meta": {"key": "value"}},
        )

    return app


class TestNormalization(unittest.TestCase):
    def test_equivalent_inputs(self) -> None:
        a = twirp.normalize_base_url("http://x") + twirp.normalize_prefix("/rpc")
        b = twirp.normalize_base_url("http://x/") + twirp.normalize_prefix("rpc/")
        self.assertEqual(a, "http://x/rpc/")
        self.assertEqual(a, b)

    def test_idempotent(self) -> None:
        for prefix in ("", "/", "/twirp", "twirp/", "/a/b"):
            once = twirp.normalize_prefix(prefix)
            self.assertEqual(twirp.normalize_prefix(once), once)
            self.assertFalse(once.startswith("/"))
        self.assertEqual(twirp.normalize_prefix(""), "")
        self.assertEqual(twirp.normalize_prefix("/"), "")


class TestContext(unittest.TestCase):
    def test_with_value_returns_new_context(self) -> None:
        ctx = twirp.Context()
        enriched = twirp.with_service_name(ctx, "Echo")
        self.assertEqual(len(ctx), 0)
        self.assertEqual(twirp.service_name(enriched), "Echo")
        self.assertIsNone(twirp.method_name(enriched))

    def test_headers_are_copied(self) -> None:
        headers = {"X-Request-Id": "1"}
        ctx = twirp.with_http_request_headers(twirp.Context(), headers)
        headers["X-Request-Id"] = "2"
        self.assertEqual(twirp.retrieve_http_request_headers(ctx), {"X-Request-Id": "1"})


class TestCreateRequest(unittest.TestCase):
    def test_fixed_headers_win(self) -> None:
        ctx = twirp.with_http_request_headers(
            twirp.Context(),
            {"Authorization": "Bearer t", "content-type": "text/plain", "ACCEPT": "*/*"},
        )
        request = twirp.create_request("http://x/rpc/a.B/C", ctx, twirp.PROTOBUF_MEDIA_TYPE, b"\x01")
        self.assertEqual(request.method, "POST")
        self.assertEqual(
            request.headers,
            {
                "Authorization": "Bearer t",
                "Accept": "application/protobuf",
                "Content-Type": "application/protobuf",
            },
        )
        self.assertEqual(request.body, b"\x01")


class TestChainInterceptors(unittest.IsolatedAsyncioTestCase):
    async def test_first_is_outermost(self) -> None:
        calls: list[str] = []

        def tag(name: str) -> twirp.Interceptor:
            def interceptor(method: twirp.Method) -> twirp.Method:
                async def wrapped(ctx: twirp.Context, req: Any) -> Any:
                    calls.append(name)
                    return await method(ctx, req)

                return wrapped

            return interceptor

        async def call(ctx: twirp.Context, req: Any) -> Any:
            calls.append("call")
            return req

        result = await twirp.chain_interceptors(tag("outer"), tag("inner"))(call)(twirp.Context(), 7)
        self.assertEqual(result, 7)
        self.assertEqual(calls, ["outer", "inner", "call"])

    async def test_empty_chain_is_identity(self) -> None:
        async def call(ctx: twirp.Context, req: Any) -> Any:
            return req

        self.assertIs(twirp.chain_interceptors()(call), call)


class TestTwirpError(unittest.TestCase):
    def setUp(self) -> None:
        ctx = twirp.Context()
        ctx = twirp.with_package_name(ctx, "echo.v1")
        ctx = twirp.with_service_name(ctx, "Echo")
        self.ctx = twirp.with_method_name(ctx, "Say")

    def test_from_response_with_envelope(self) -> None:
        body = json.dumps({"code": "invalid_argument", "msg": "bad", "meta": {"field": "value"}}).encode()
        err = twirp.TwirpError.from_response(400, body, self.ctx)
        self.assertEqual(err.code, twirp.ErrorCode.INVALID_ARGUMENT)
        self.assertEqual(err.msg, "bad")
        self.assertEqual(err.meta, {"field": "value"})
        self.assertFalse(err.connection_error)
        self.assertEqual(str(err), "echo.v1.Echo/Say: [400] invalid_argument: bad")

    def test_from_response_without_envelope(self) -> None:
        err = twirp.TwirpError.from_response(503, b"<html>down</html>", self.ctx)
        self.assertEqual(err.code, "unavailable")
        self.assertEqual(err.meta["http_error_from_intermediary"], "true")
        self.assertEqual(err.meta["status_code"], "503")
        self.assertEqual(err.meta["body"], "<html>down</html>")

    def test_intermediary_codes(self) -> None:
        cases = {302: "internal", 400: "internal", 401: "unauthenticated", 403: "permission_denied",
                 404: "bad_route", 429: "unavailable", 502: "unavailable", 500: "unknown"}
        for status, code in cases.items():
            self.assertEqual(twirp.TwirpError.from_response(status, b"", self.ctx).code, code)

    def test_connection_error_marker(self) -> None:
        err = twirp.TwirpError.from_connection_error("refused", self.ctx)
        self.assertTrue(err.connection_error)
        self.assertIs(err.context, self.ctx)

    def test_error_code_http_status(self) -> None:
        self.assertEqual(twirp.ErrorCode.NOT_FOUND.http_status, 404)
        self.assertEqual(twirp.ErrorCode.RESOURCE_EXHAUSTED.http_status, 429)


class TestGeneratedClients(unittest.IsolatedAsyncioTestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.module = _load_echo_module()

    def setUp(self) -> None:
        self.seen: list[dict[str, str]] = []
        self.transport = httpx.ASGITransport(app=_build_echo_app(self.seen))
        self.errors: list[twirp.TwirpError] = []
        self.hooks = twirp.ClientHooks(on_error=lambda ctx, err: self.errors.append(err))

    def _clients(self, **kwargs: Any) -> list[Any]:
        kwargs.setdefault("hooks", self.hooks)
        return [
            self.module.EchoJSONClient("http://testserver", "/twirp", transport=self.transport, **kwargs),
            self.module.EchoProtobufClient("http://testserver", "twirp/", transport=self.transport, **kwargs),
        ]

    async def test_clients_implement_interface(self) -> None:
        for client in self._clients():
            self.assertIsInstance(client, self.module.Echo)
            self.assertEqual(client.base_url, "http://testserver/")
            self.assertEqual(client.prefix, "twirp/")
        with self.assertRaises(TypeError):
            self.module.Echo()

    async def test_round_trip_both_transports(self) -> None:
        json_client, protobuf_client = self._clients()
        req = wrappers_pb2.StringValue(value="hello")

        self.assertEqual(await json_client.say(twirp.Context(), req), wrappers_pb2.StringValue(value="HELLO"))
        self.assertEqual(await protobuf_client.say(twirp.Context(), req), wrappers_pb2.StringValue(value="HELLO"))

        self.assertEqual(self.seen[0]["content-type"], "application/json")
        self.assertEqual(self.seen[0]["accept"], "application/json")
        self.assertEqual(self.seen[1]["content-type"], "application/protobuf")
        self.assertEqual(self.errors, [])

    async def test_context_headers_are_sent(self) -> None:
        ctx = twirp.with_http_request_headers(
            twirp.Context(), {"Authorization": "Bearer t", "Content-Type": "text/plain"}
        )
        for client in self._clients():
            await client.say(ctx, wrappers_pb2.StringValue(value="x"))
        for headers in self.seen:
            self.assertEqual(headers["authorization"], "Bearer t")
            self.assertNotEqual(headers["content-type"], "text/plain")

    async def test_non_200_surfaces_twirp_error_with_context(self) -> None:
        for client in self._clients():
            with self.assertRaises(twirp.TwirpError) as ctx:
                await client.fail(twirp.Context(), wrappers_pb2.StringValue(value="x"))
            err = ctx.exception
            self.assertEqual(err.code, "not_found")
            self.assertEqual(err.msg, "no such echo")
            self.assertEqual(err.meta, {"key": "value"})
            self.assertEqual(err.status_code, 404)
            self.assertFalse(err.connection_error)
            self.assertEqual(twirp.package_name(err.context), "echo.v1")
            self.assertEqual(twirp.service_name(err.context), "Echo")
            self.assertEqual(twirp.method_name(err.context), "Fail")
        self.assertEqual(len(self.errors), 2)

    async def test_connection_failure_is_same_error_type(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        for client_cls in (self.module.EchoJSONClient, self.module.EchoProtobufClient):
            client = client_cls("http://nowhere", "", hooks=self.hooks, transport=httpx.MockTransport(refuse))
            with self.assertRaises(twirp.TwirpError) as ctx:
                await client.say(twirp.Context(), wrappers_pb2.StringValue(value="x"))
            err = ctx.exception
            self.assertTrue(err.connection_error)
            self.assertIn("connection refused", err.msg)
            self.assertEqual(twirp.method_name(err.context), "Say")
            self.assertIsInstance(err.__cause__, httpx.ConnectError)
        self.assertEqual(len(self.errors), 2)

    async def test_hooks_and_interceptor_see_enriched_context(self) -> None:
        events: list[tuple[str, Any]] = []

        def on_request_prepared(ctx: twirp.Context, request: twirp.HttpRequest) -> twirp.Context:
            events.append(("prepared", (twirp.service_name(ctx), twirp.method_name(ctx))))
            request.headers["X-Trace"] = "abc"
            return ctx.with_value("trace", "abc")

        def on_response_received(ctx: twirp.Context) -> None:
            events.append(("received", ctx.get("trace")))

        def interceptor(method: twirp.Method) -> twirp.Method:
            async def wrapped(ctx: twirp.Context, req: Any) -> Any:
                events.append(("intercepted", twirp.package_name(ctx)))
                return await method(ctx, req)

            return wrapped

        hooks = twirp.ClientHooks(on_request_prepared=on_request_prepared, on_response_received=on_response_received)
        (client, _) = self._clients(hooks=hooks, interceptor=interceptor)
        await client.say(twirp.Context(), wrappers_pb2.StringValue(value="x"))

        self.assertEqual(
            events,
            [("intercepted", "echo.v1"), ("prepared", ("Echo", "Say")), ("received", "abc")],
        )
        self.assertEqual(self.seen[0]["x-trace"], "abc")

    async def test_hook_failure_is_marked(self) -> None:
        def explode(ctx: twirp.Context, request: twirp.HttpRequest) -> None:
            raise RuntimeError("boom")

        hooks = twirp.ClientHooks(on_request_prepared=explode, on_error=lambda ctx, err: self.errors.append(err))
        (client, _) = self._clients(hooks=hooks)
        with self.assertRaises(twirp.TwirpError) as ctx:
            await client.say(twirp.Context(), wrappers_pb2.StringValue(value="x"))
        self.assertEqual(ctx.exception.meta, {"hook": "on_request_prepared"})
        self.assertFalse(ctx.exception.connection_error)
        self.assertEqual(self.errors, [ctx.exception])
        self.assertEqual(self.seen, [])

    async def test_undecodable_success_body(self) -> None:
        def garbage(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"{not json")

        client = self.module.EchoJSONClient("http://x", "", hooks=self.hooks, transport=httpx.MockTransport(garbage))
        with self.assertRaises(twirp.TwirpError) as ctx:
            await client.say(twirp.Context(), wrappers_pb2.StringValue(value="x"))
        self.assertEqual(ctx.exception.code, "internal")
        self.assertFalse(ctx.exception.connection_error)
        self.assertEqual(len(self.errors), 1)

    async def test_request_url(self) -> None:
        urls: list[str] = []

        def record(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, content=wrappers_pb2.StringValue(value="ok").SerializeToString())

        client = self.module.EchoProtobufClient("http://x", "/rpc", transport=httpx.MockTransport(record))
        self.assertEqual(
            await client.say(twirp.Context(), wrappers_pb2.StringValue()), wrappers_pb2.StringValue(value="ok")
        )
        self.assertEqual(urls, ["http://x/rpc/echo.v1.Echo/Say"])


class _ClosingTransport(httpx.AsyncBaseTransport):
    def __init__(self, handler: Any) -> None:
        self._inner = httpx.MockTransport(handler)
        self.closed = False

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._inner.handle_async_request(request)

    async def aclose(self) -> None:
        self.closed = True


class TestConnectionRelease(unittest.IsolatedAsyncioTestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.module = _load_echo_module()

    async def _call(self, handler: Any, hooks: twirp.ClientHooks | None = None) -> _ClosingTransport:
        transport = _ClosingTransport(handler)
        client = self.module.EchoProtobufClient("http://x", "", hooks=hooks, transport=transport)
        try:
            await client.say(twirp.Context(), wrappers_pb2.StringValue(value="x"))
        except twirp.TwirpError:
            pass
        return transport

    async def test_closed_after_success(self) -> None:
        transport = await self._call(
            lambda request: httpx.Response(200, content=wrappers_pb2.StringValue(value="ok").SerializeToString())
        )
        self.assertTrue(transport.closed)

    async def test_closed_after_error_status(self) -> None:
        transport = await self._call(
            lambda request: httpx.Response(500, json={"code": "internal", "msg": "down"})
        )
        self.assertTrue(transport.closed)

    async def test_closed_after_connection_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = await self._call(refuse)
        self.assertTrue(transport.closed)

    async def test_closed_after_hook_failure(self) -> None:
        def explode(ctx: twirp.Context, request: twirp.HttpRequest) -> None:
            raise RuntimeError("boom")

        transport = await self._call(
            lambda request: httpx.Response(200), twirp.ClientHooks(on_request_prepared=explode)
        )
        self.assertTrue(transport.closed)


class TestMergeModules(unittest.TestCase):
    def test_first_module_wins(self) -> None:
        a = types.ModuleType("a")
        a.Size = 1
        a._private = 2
        b = types.ModuleType("b")
        b.Size = 3
        b.Color = 4
        merged = twirp.merge_modules(a, b)
        self.assertEqual(merged.Size, 1)
        self.assertEqual(merged.Color, 4)
        self.assertFalse(hasattr(merged, "_private"))


if __name__ == "__main__":
    unittest.main()

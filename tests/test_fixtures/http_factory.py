"""
HTTP Test Factory

Builds httpx clients backed by ``httpx.MockTransport`` so the connection
manager and enhanced client can be exercised without a network.
"""

from collections.abc import Callable
from typing import Any

import httpx
import orjson

Handler = Callable[[httpx.Request], httpx.Response]


class HttpTestFactory:
    """Factory for mock HTTP handlers and client factories."""

    @staticmethod
    def client_factory(handler: Handler, created: list | None = None) -> Callable:
        """
        Return a ``ClientFactory`` producing clients that route to ``handler``.

        Every client built is appended to ``created`` when given.
        """

        def factory(host: str, config) -> httpx.AsyncClient:
            client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            if created is not None:
                created.append(client)
            return client

        return factory

    @staticmethod
    def json_handler(payload: Any = None, status_code: int = 200, calls: list | None = None) -> Handler:
        """Handler that always answers ``payload`` as JSON and records requests."""
        body = orjson.dumps({"ok": True} if payload is None else payload)

        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            return httpx.Response(status_code, content=body, headers={"Content-Type": "application/json"})

        return handler

    @staticmethod
    def echo_handler(calls: list | None = None) -> Handler:
        """Handler that answers with the method, path and decoded JSON body it received."""

        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            body = orjson.loads(request.content) if request.content else None
            return httpx.Response(
                200,
                content=orjson.dumps({"method": request.method, "path": request.url.path, "body": body}),
            )

        return handler

    @staticmethod
    def sequence_handler(responses: list, calls: list | None = None) -> Handler:
        """
        Handler that replays ``responses`` in order (the last one repeats).

        Entries are status codes (empty JSON object body) or exceptions to raise.
        """
        remaining = list(responses)

        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            if isinstance(item, BaseException):
                raise item
            return httpx.Response(item, content=b"{}")

        return handler

    @staticmethod
    def failing_handler(error: Exception | None = None) -> Handler:
        """Handler that always raises a connection error."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise error or httpx.ConnectError("connection refused", request=request)

        return handler

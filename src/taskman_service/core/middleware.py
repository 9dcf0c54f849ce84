"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send


# POST routes that read a JSON body. Accept and release take none.
_JSON_BODY_ROUTES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^/tasks$"),
    re.compile(r"^/tasks/[^/]+/submit$"),
    re.compile(r"^/users$"),
    re.compile(r"^/users/[^/]+/(award|deduct)$"),
)


def _takes_json_body(method: str, path: str) -> bool:
    return method == "POST" and any(route.match(path) for route in _JSON_BODY_ROUTES)


def _header(scope: Scope, name: bytes) -> str:
    for key, value in cast("list[tuple[bytes, bytes]]", scope.get("headers", [])):
        if key.lower() == name:
            return value.decode("latin-1")
    return ""


class _BodyTooLarge(Exception):
    pass


class RequestValidationMiddleware:
    """
    Rejects bad JSON requests before they reach a router.

    On endpoints that take a JSON body, a non-JSON ``Content-Type`` is a
    415 and a body over ``max_body_size`` is a 413. Other requests,
    including unknown paths and methods, go straight to the app so the
    router can answer 404 or 405.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not _takes_json_body(
            cast("str", scope.get("method", "")), cast("str", scope.get("path", ""))
        ):
            await self.app(scope, receive, send)
            return

        if not _header(scope, b"content-type").lower().startswith("application/json"):
            await self._reject(
                scope,
                receive,
                send,
                415,
                "UNSUPPORTED_MEDIA_TYPE",
                "Content-Type must be application/json",
            )
            return

        declared = _header(scope, b"content-length")
        try:
            if declared.isdigit() and int(declared) > self.max_body_size:
                raise _BodyTooLarge
            body = await self._read_body(receive)
        except _BodyTooLarge:
            await self._reject(
                scope,
                receive,
                send,
                413,
                "PAYLOAD_TOO_LARGE",
                "Request body exceeds maximum allowed size",
            )
            return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if replayed:
                return {"type": "http.disconnect"}
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}

        await self.app(scope, replay, send)

    async def _read_body(self, receive: Receive) -> bytes:
        """Buffer the whole body, stopping as soon as it exceeds the limit."""
        chunks: list[bytes] = []
        size = 0
        while True:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            size += len(chunk)
            if size > self.max_body_size:
                raise _BodyTooLarge
            chunks.append(chunk)
            if not message.get("more_body", False):
                return b"".join(chunks)

    @staticmethod
    async def _reject(
        scope: Scope, receive: Receive, send: Send, status_code: int, error: str, message: str
    ) -> None:
        response = JSONResponse(
            status_code=status_code,
            content={"error": error, "message": message, "details": {}},
        )
        await response(scope, receive, send)

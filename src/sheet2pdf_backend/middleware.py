from __future__ import annotations

import logging
from typing import Awaitable, Callable

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .errors import UploadTooLarge

logger = logging.getLogger(__name__)

# room for multipart boundaries and part headers on top of the file itself
MULTIPART_OVERHEAD_BYTES = 64 * 1024

RejectHandler = Callable[[Request, UploadTooLarge], Awaitable[Response]]


class BodySizeLimitMiddleware:
    """
    Rejects request bodies larger than the upload ceiling before they are buffered.

    A declared Content-Length over the limit is answered immediately without
    reading the body. Chunked or under-declared bodies are counted as they
    stream in; crossing the limit raises UploadTooLarge from the receive
    channel, which aborts form parsing and is rendered by the app's exception
    handler.

    The exact per-file ceiling is enforced again by the pipeline, since this
    limit also has to allow for the multipart framing.
    """

    def __init__(self, app: ASGIApp, max_upload_bytes: int, on_reject: RejectHandler) -> None:
        self.app = app
        self.max_upload_bytes = max_upload_bytes
        self.max_body_bytes = max_upload_bytes + MULTIPART_OVERHEAD_BYTES
        self.on_reject = on_reject

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] not in ("POST", "PUT", "PATCH"):
            await self.app(scope, receive, send)
            return

        declared = Headers(scope=scope).get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > self.max_body_bytes:
            logger.warning(f"Rejected {scope['path']} upload: Content-Length {declared} > {self.max_body_bytes}")
            response = await self.on_reject(Request(scope), UploadTooLarge(self.max_upload_bytes))
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    logger.warning(f"Rejected {scope['path']} upload after {received} streamed bytes")
                    raise UploadTooLarge(self.max_upload_bytes)
            return message

        await self.app(scope, limited_receive, send)

from __future__ import annotations

import logging

import httpx
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .constants import LOGGER, USER_AGENT

HTTP_LOGGER = LOGGER.getChild("http")


async def log_request(request: httpx.Request) -> None:
    HTTP_LOGGER.debug("Outbound request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    HTTP_LOGGER.debug(
        "Outbound response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        HTTP_LOGGER.warning(
            "Outbound error %s %s -> %s: %s",
            response.request.method,
            response.request.url,
            response.status_code,
            text,
        )


def build_http_client(
    *,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        timeout=timeout,
        transport=transport,
        event_hooks={"request": [log_request], "response": [log_response]},
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self._logger = logger or LOGGER.getChild("requests")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(
                "Inbound %s %s query=%s headers=%s",
                request.method,
                request.url.path,
                request.url.query,
                sorted(request.headers.keys()),
            )
        response = await call_next(request)
        self._logger.debug(
            "Inbound %s %s -> %s", request.method, request.url.path, response.status_code
        )
        return response

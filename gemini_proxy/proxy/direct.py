"""Direct pass-through to Gemini's native REST paths (/v1, /v1beta)."""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse

from ..errors import ProxyError, error_response
from ..routing import request_path
from .headers import response_headers, upstream_headers


logger = logging.getLogger(__name__)

# Some SDK versions prepend /v1 to an already versioned path
DOUBLED_PREFIX = "/v1/v1beta"


def normalize_path(path: str) -> str:
    if DOUBLED_PREFIX not in path:
        return path
    fixed = path.replace(DOUBLED_PREFIX, "/v1beta", 1)
    logger.info("Collapsed doubled path prefix: %s -> %s", path, fixed)
    return fixed


def target_url(upstream_base: str, path: str, query: str = "") -> str:
    base = upstream_base.rstrip("/")
    return f"{base}{path}?{query}" if query else f"{base}{path}"


async def proxy_direct(
    request: Request,
    client: httpx.AsyncClient,
    upstream_base: str,
    api_client: str,
) -> Response:
    url = target_url(upstream_base, normalize_path(request_path(request)), request.url.query)
    headers = upstream_headers(request.headers.items(), api_client)
    has_body = "content-length" in request.headers or "transfer-encoding" in request.headers

    upstream_request = client.build_request(
        request.method,
        url,
        headers=headers,
        content=request.stream() if has_body else None,
    )
    try:
        upstream_response = await client.send(upstream_request, stream=True, follow_redirects=False)
    except httpx.HTTPError as exc:
        logger.error("Direct proxy request to %s failed: %s", url, exc)
        return error_response(ProxyError(500, str(exc)))
    except Exception as exc:
        # e.g. the client aborting the upload mid-stream
        logger.error("Direct proxy request to %s aborted: %r", url, exc)
        return error_response(exc)

    logger.debug("%s %s -> %s", request.method, url, upstream_response.status_code)

    async def body() -> AsyncIterator[bytes]:
        # raw bytes, so Content-Encoding and Content-Length still hold
        try:
            async for chunk in upstream_response.aiter_raw():
                yield chunk
        finally:
            await upstream_response.aclose()

    response = StreamingResponse(body(), status_code=upstream_response.status_code)
    for name, value in response_headers(upstream_response.headers.multi_items()):
        response.headers.append(name, value)
    return response
